from __future__ import annotations

import random
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, TypeVar

if TYPE_CHECKING:
    from .settings import NBackSettings

T = TypeVar("T")


class GameMode(StrEnum):
    VISUAL = "Visual"
    AUDIO = "Audio"
    DUAL = "Dual"


class Channel(StrEnum):
    VISUAL = "visual"
    AUDIO = "audio"


class Status(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    FINISHED = "finished"
    # Fallback when the engine is asked to finish a session it never started.
    SETTINGS = "settings"


class FeedbackKind(StrEnum):
    CORRECT = "correct"
    MISS = "miss"
    FALSE_ALARM = "false-alarm"


class RandomSource(Protocol):
    """Anything the sequence generator can draw from (random.Random fits)."""

    def random(self) -> float: ...

    def randrange(self, stop: int) -> int: ...

    def choice(self, seq: Sequence[T]) -> T: ...


@dataclass(frozen=True, slots=True)
class Stimulus:
    visual: int | None  # grid cell 0..8
    audio: str | None  # letter from AUDIO_LETTERS

    def value(self, channel: Channel) -> int | str | None:
        return self.visual if channel is Channel.VISUAL else self.audio


@dataclass(slots=True)
class TrialResponse:
    """Per-trial response slot. True = match key pressed, None = unanswered."""

    visual: bool | None = None
    audio: bool | None = None

    def get(self, channel: Channel) -> bool | None:
        return self.visual if channel is Channel.VISUAL else self.audio

    def mark_pressed(self, channel: Channel) -> None:
        if channel is Channel.VISUAL:
            self.visual = True
        else:
            self.audio = True


@dataclass(frozen=True, slots=True)
class Feedback:
    visual: FeedbackKind | None = None
    audio: FeedbackKind | None = None

    def get(self, channel: Channel) -> FeedbackKind | None:
        return self.visual if channel is Channel.VISUAL else self.audio

    def with_channel(self, channel: Channel, kind: FeedbackKind | None) -> "Feedback":
        if channel is Channel.VISUAL:
            return Feedback(visual=kind, audio=self.audio)
        return Feedback(visual=self.visual, audio=kind)

    @property
    def empty(self) -> bool:
        return self.visual is None and self.audio is None


NO_FEEDBACK = Feedback()


@dataclass(frozen=True, slots=True)
class ChannelMetrics:
    hits: int
    misses: int
    false_alarms: int
    errors: int  # misses + false_alarms
    total_matches: int
    rate: float  # percent


@dataclass(frozen=True, slots=True)
class NBackResults:
    settings: "NBackSettings"
    total_trials: int
    visual: ChannelMetrics | None  # None when the mode disables the channel
    audio: ChannelMetrics | None
    overall_success_rate: float

    def metrics(self, channel: Channel) -> ChannelMetrics | None:
        return self.visual if channel is Channel.VISUAL else self.audio


@dataclass(frozen=True, slots=True)
class NBackEvent:
    trial_index: int
    channel: Channel
    kind: FeedbackKind
    at_ms: float

    @property
    def score_delta(self) -> int:
        return 1 if self.kind is FeedbackKind.CORRECT else -1


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """View model for the UI (pure data)."""

    status: Status
    trial_index: int
    total_trials: int
    score: int
    elapsed_s: float
    time_remaining_s: float | None
    active_visual: int | None
    active_audio: str | None
    feedback: Feedback
    results: NBackResults | None
    setup_error: str | None = None


class SeededRng:
    """Simple seeded RNG wrapper to keep deterministic streams explicit."""

    def __init__(self, seed: int) -> None:
        self._rng = random.Random(int(seed))

    def random(self) -> float:
        return self._rng.random()

    def randrange(self, stop: int) -> int:
        if stop <= 0:
            raise ValueError("stop must be > 0")
        return self._rng.randrange(stop)

    def choice(self, seq: Sequence[T]) -> T:
        return self._rng.choice(seq)
