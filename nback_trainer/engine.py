from __future__ import annotations

import logging
from collections.abc import Sequence

from .cognitive_core import (
    NO_FEEDBACK,
    Channel,
    Feedback,
    FeedbackKind,
    NBackEvent,
    NBackResults,
    SessionSnapshot,
    Status,
    Stimulus,
    TrialResponse,
)
from .scoring import score_session
from .settings import FEEDBACK_DURATION_MS, NBackSettings

logger = logging.getLogger(__name__)

NO_SESSION_ERROR = "No valid session: check stimulus duration and interval."


class NBackEngine:
    """Trial state machine for one N-back session at a time.

    States: idle -> running <-> paused, running -> finished. ``stop()``
    returns to idle from anywhere and ``start()`` re-initialises everything.

    - Synchronous and I/O free: every time-dependent call takes a timestamp
      in milliseconds from the caller.
    - Each event method is total over all states; calls that are not valid
      in the current state change nothing and return False.
    """

    def __init__(self, *, feedback_duration_ms: float = FEEDBACK_DURATION_MS) -> None:
        if feedback_duration_ms < 0:
            raise ValueError("feedback_duration_ms must be >= 0")
        self._feedback_duration_ms = float(feedback_duration_ms)

        self._settings: NBackSettings | None = None
        self._sequence: tuple[Stimulus, ...] = ()
        self._setup_error: str | None = None
        self._status = Status.IDLE
        self._reset_session_fields()

    @property
    def status(self) -> Status:
        return self._status

    @property
    def settings(self) -> NBackSettings | None:
        return self._settings

    @property
    def sequence(self) -> tuple[Stimulus, ...]:
        return self._sequence

    @property
    def current_trial(self) -> int:
        return self._current_trial

    @property
    def score(self) -> int:
        return self._score

    @property
    def elapsed_s(self) -> float:
        return self._elapsed_s

    @property
    def feedback(self) -> Feedback:
        return self._feedback

    @property
    def feedback_until_ms(self) -> float:
        return self._feedback_until_ms

    @property
    def active_visual(self) -> int | None:
        return self._active_visual

    @property
    def active_audio(self) -> str | None:
        return self._active_audio

    @property
    def results(self) -> NBackResults | None:
        return self._results

    @property
    def setup_error(self) -> str | None:
        return self._setup_error

    def responses(self) -> list[TrialResponse]:
        return [TrialResponse(visual=r.visual, audio=r.audio) for r in self._responses]

    def events(self) -> list[NBackEvent]:
        return list(self._events)

    def start(self, settings: NBackSettings, sequence: Sequence[Stimulus]) -> None:
        self._settings = settings
        self._sequence = tuple(sequence)
        self._status = Status.IDLE
        self._reset_session_fields()
        if not self._sequence:
            self._setup_error = NO_SESSION_ERROR
            logger.error("Session started with an empty stimulus sequence; staying idle.")
        else:
            self._setup_error = None
            logger.info(
                "Session prepared: %d trials, mode=%s, N=%d",
                len(self._sequence),
                settings.game_mode.value,
                settings.n_level,
            )

    def run(self) -> bool:
        if self._status is not Status.IDLE:
            logger.warning("run() ignored: status is %s, expected idle.", self._status.value)
            return False
        if self._settings is None or self._setup_error is not None:
            logger.warning("run() ignored: no valid session has been started.")
            return False
        self._status = Status.RUNNING
        return True

    def stop(self) -> None:
        self._status = Status.IDLE
        self._reset_session_fields()

    def pause(self) -> bool:
        if self._status is not Status.RUNNING:
            logger.warning("pause() ignored: status is %s.", self._status.value)
            return False
        self._status = Status.PAUSED
        return True

    def resume(self) -> bool:
        if self._status is not Status.PAUSED:
            logger.warning("resume() ignored: status is %s.", self._status.value)
            return False
        self._status = Status.RUNNING
        return True

    def advance_trial(self, now_ms: float) -> bool:
        """Expose the next stimulus, resolving misses on the trial just shown.

        When the sequence is exhausted the session ends through
        ``end_session()`` so results are always computed.
        """

        if self._status is not Status.RUNNING:
            logger.warning("advance_trial() ignored: status is %s.", self._status.value)
            return False
        settings = self._settings
        assert settings is not None

        nxt = self._current_trial + 1
        if nxt >= len(self._sequence):
            return self.end_session()

        miss_feedback = NO_FEEDBACK
        prev = self._current_trial
        if prev >= settings.n_level:
            for channel in settings.enabled_channels:
                if self._is_match(prev, channel) and self._responses[prev].get(channel) is not True:
                    miss_feedback = miss_feedback.with_channel(channel, FeedbackKind.MISS)
                    self._record(prev, channel, FeedbackKind.MISS, now_ms)

        if miss_feedback.empty:
            self._feedback = NO_FEEDBACK
            self._feedback_until_ms = 0.0
        else:
            self._feedback = miss_feedback
            self._feedback_until_ms = float(now_ms) + self._feedback_duration_ms

        stimulus = self._sequence[nxt]
        self._active_visual = stimulus.visual
        self._active_audio = stimulus.audio
        self._current_trial = nxt
        return True

    def register_response(self, channel: Channel, now_ms: float) -> bool:
        if self._status is not Status.RUNNING:
            return False
        settings = self._settings
        assert settings is not None

        idx = self._current_trial
        if idx < settings.n_level:
            return False
        if not settings.channel_enabled(channel):
            return False
        response = self._responses[idx]
        if response.get(channel) is not None:
            logger.debug("Duplicate %s response on trial %d ignored.", channel.value, idx)
            return False

        response.mark_pressed(channel)
        kind = FeedbackKind.CORRECT if self._is_match(idx, channel) else FeedbackKind.FALSE_ALARM
        self._record(idx, channel, kind, now_ms)
        self._feedback = self._feedback.with_channel(channel, kind)
        self._feedback_until_ms = float(now_ms) + self._feedback_duration_ms
        return True

    def update_elapsed_time(self, value_s: float) -> None:
        self._elapsed_s = float(value_s)

    def end_session(self) -> bool:
        settings = self._settings
        if settings is None:
            logger.error("end_session() called before any session was started.")
            self._status = Status.SETTINGS
            return False
        if self._status is Status.FINISHED:
            return False

        self._results = score_session(settings, self._sequence, self._responses)
        self._status = Status.FINISHED
        self._active_visual = None
        self._active_audio = None
        self._feedback = NO_FEEDBACK
        self._feedback_until_ms = 0.0
        logger.info(
            "Session finished: score=%d success=%.1f%%",
            self._score,
            self._results.overall_success_rate,
        )
        return True

    def clear_feedback(self, now_ms: float) -> bool:
        if float(now_ms) < self._feedback_until_ms:
            return False
        self._feedback = NO_FEEDBACK
        self._feedback_until_ms = 0.0
        return True

    def clear_visual_stimulus(self) -> None:
        self._active_visual = None

    def time_remaining_s(self) -> float | None:
        if self._settings is None or self._status not in (Status.RUNNING, Status.PAUSED):
            return None
        return max(0.0, float(self._settings.session_duration_s) - self._elapsed_s)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            status=self._status,
            trial_index=self._current_trial,
            total_trials=len(self._sequence),
            score=self._score,
            elapsed_s=self._elapsed_s,
            time_remaining_s=self.time_remaining_s(),
            active_visual=self._active_visual,
            active_audio=self._active_audio,
            feedback=self._feedback,
            results=self._results,
            setup_error=self._setup_error,
        )

    def _is_match(self, index: int, channel: Channel) -> bool:
        assert self._settings is not None
        back_index = index - self._settings.n_level
        if back_index < 0:
            return False
        value = self._sequence[index].value(channel)
        back = self._sequence[back_index].value(channel)
        return value is not None and back is not None and value == back

    def _record(self, index: int, channel: Channel, kind: FeedbackKind, at_ms: float) -> None:
        event = NBackEvent(trial_index=index, channel=channel, kind=kind, at_ms=float(at_ms))
        self._events.append(event)
        self._score += event.score_delta

    def _reset_session_fields(self) -> None:
        self._responses: list[TrialResponse] = [TrialResponse() for _ in self._sequence]
        self._current_trial = -1
        self._score = 0
        self._elapsed_s = 0.0
        self._active_visual: int | None = None
        self._active_audio: str | None = None
        self._feedback = NO_FEEDBACK
        self._feedback_until_ms = 0.0
        self._results: NBackResults | None = None
        self._events: list[NBackEvent] = []


def build_nback_engine(*, feedback_duration_ms: float = FEEDBACK_DURATION_MS) -> NBackEngine:
    return NBackEngine(feedback_duration_ms=feedback_duration_ms)
