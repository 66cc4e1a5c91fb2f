from __future__ import annotations

import logging
from enum import Enum

from .clock import Clock
from .cognitive_core import Channel, NBackResults, SessionSnapshot, Status
from .engine import NBackEngine, build_nback_engine
from .sequence import NBackSequenceGenerator
from .settings import NBackSettings
from .speech import NullSpeaker, Speaker

logger = logging.getLogger(__name__)

ELAPSED_TICK_MS = 1000.0


class _Timer(Enum):
    # Declaration order breaks ties between timers due at the same instant.
    ADVANCE = "advance"
    ELAPSED = "elapsed"
    VISUAL = "visual"
    FEEDBACK = "feedback"


class NBackSessionDriver:
    """Clock/timer, input and speech adapter around ``NBackEngine``.

    Call ``update()`` regularly (once per frame). Every timer that has come
    due since the last call fires in timestamp order and receives its own due
    time, so a long frame replays exactly as a series of short ones would.
    """

    def __init__(
        self,
        *,
        clock: Clock,
        settings: NBackSettings,
        seed: int,
        speaker: Speaker | None = None,
        engine: NBackEngine | None = None,
    ) -> None:
        self._clock = clock
        self._settings = settings
        self._seed = int(seed)
        self._generator = NBackSequenceGenerator(seed=self._seed)
        self._speaker: Speaker = speaker if speaker is not None else NullSpeaker()
        self._engine = engine if engine is not None else build_nback_engine()

        self._due: dict[_Timer, float] = {}
        self._last_elapsed_tick_ms = 0.0

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def settings(self) -> NBackSettings:
        return self._settings

    @property
    def engine(self) -> NBackEngine:
        return self._engine

    @property
    def status(self) -> Status:
        return self._engine.status

    @property
    def results(self) -> NBackResults | None:
        return self._engine.results

    def snapshot(self) -> SessionSnapshot:
        return self._engine.snapshot()

    def start(self) -> bool:
        """Generate a fresh sequence and run it. False when no session could start."""

        self._cancel_all()
        sequence = self._generator.generate(self._settings)
        self._engine.start(self._settings, sequence)
        if not self._engine.run():
            return False
        self._schedule_run(self._now_ms())
        return True

    def stop(self) -> None:
        self._engine.stop()
        self._cancel_all()

    def pause(self) -> bool:
        if not self._engine.pause():
            return False
        self._cancel_all()
        return True

    def resume(self) -> bool:
        if not self._engine.resume():
            return False
        self._schedule_run(self._now_ms())
        self._sync_feedback_timer()
        return True

    def toggle_pause(self) -> bool:
        if self._engine.status is Status.PAUSED:
            return self.resume()
        return self.pause()

    def press(self, channel: Channel) -> bool:
        if self._engine.status is not Status.RUNNING:
            return False
        # Fire anything already due so the press lands on the right trial.
        self.update()
        accepted = self._engine.register_response(channel, self._now_ms())
        if accepted:
            self._sync_feedback_timer()
        return accepted

    def handle_key(self, key: str) -> bool:
        channel = self.channel_for_key(key)
        if channel is None:
            return False
        return self.press(channel)

    def channel_for_key(self, key: str) -> Channel | None:
        token = str(key).strip().lower()
        if token == "":
            return None
        # Visual wins when both channels share a key.
        for channel in (Channel.VISUAL, Channel.AUDIO):
            if self._settings.channel_enabled(channel) and token == self._settings.match_key(channel).lower():
                return channel
        return None

    def update(self) -> None:
        now = self._now_ms()
        while True:
            nxt = self._next_due()
            if nxt is None:
                return
            timer, due = nxt
            if due > now:
                return
            del self._due[timer]
            self._fire(timer, due)

    def _fire(self, timer: _Timer, at_ms: float) -> None:
        if timer is _Timer.ADVANCE:
            self._fire_advance(at_ms)
        elif timer is _Timer.ELAPSED:
            self._fire_elapsed(at_ms)
        elif timer is _Timer.VISUAL:
            self._engine.clear_visual_stimulus()
        else:
            self._engine.clear_feedback(at_ms)
            self._sync_feedback_timer()

    def _fire_advance(self, at_ms: float) -> None:
        self._engine.advance_trial(at_ms)
        if self._engine.status is not Status.RUNNING:
            self._on_session_end()
            return

        self._due[_Timer.ADVANCE] = at_ms + float(self._settings.trial_period_ms)
        if self._engine.active_visual is not None:
            self._due[_Timer.VISUAL] = at_ms + float(self._settings.stimulus_duration_ms)
        else:
            self._due.pop(_Timer.VISUAL, None)
        self._sync_feedback_timer()

        letter = self._engine.active_audio
        if letter is not None and not self._speaker.is_speaking():
            self._speaker.speak(letter)

    def _fire_elapsed(self, at_ms: float) -> None:
        delta_s = max(0.0, at_ms - self._last_elapsed_tick_ms) / 1000.0
        self._last_elapsed_tick_ms = at_ms
        elapsed = self._engine.elapsed_s + delta_s
        self._engine.update_elapsed_time(elapsed)

        if elapsed >= float(self._settings.session_duration_s):
            self._engine.end_session()
            self._on_session_end()
            return
        self._due[_Timer.ELAPSED] = at_ms + ELAPSED_TICK_MS

    def _on_session_end(self) -> None:
        self._cancel_all()
        logger.debug("Session timers cancelled at status %s.", self._engine.status.value)

    def _schedule_run(self, now_ms: float) -> None:
        self._due[_Timer.ADVANCE] = now_ms
        self._due[_Timer.ELAPSED] = now_ms + ELAPSED_TICK_MS
        self._last_elapsed_tick_ms = now_ms

    def _sync_feedback_timer(self) -> None:
        until = self._engine.feedback_until_ms
        if until > 0.0:
            self._due[_Timer.FEEDBACK] = until
        else:
            self._due.pop(_Timer.FEEDBACK, None)

    def _cancel_all(self) -> None:
        self._due.clear()
        self._speaker.cancel()

    def _next_due(self) -> tuple[_Timer, float] | None:
        best: tuple[_Timer, float] | None = None
        for timer in _Timer:
            due = self._due.get(timer)
            if due is None:
                continue
            if best is None or due < best[1]:
                best = (timer, due)
        return best

    def _now_ms(self) -> float:
        return float(self._clock.now()) * 1000.0


def build_nback_session(
    *,
    clock: Clock,
    settings: NBackSettings,
    seed: int,
    speaker: Speaker | None = None,
) -> NBackSessionDriver:
    return NBackSessionDriver(clock=clock, settings=settings, seed=seed, speaker=speaker)
