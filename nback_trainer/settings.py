from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from .cognitive_core import Channel, GameMode

AUDIO_LETTERS: tuple[str, ...] = ("C", "H", "K", "L", "Q", "R", "S", "T")

GRID_SIZE = 3
GRID_CELL_COUNT = GRID_SIZE * GRID_SIZE

FEEDBACK_DURATION_MS = 500.0

MIN_N_LEVEL = 1
MAX_N_LEVEL = 5
MIN_STIMULUS_DURATION_MS = 500
MAX_STIMULUS_DURATION_MS = 3000
MIN_ISI_MS = 500
MAX_ISI_MS = 5000
MIN_SESSION_DURATION_S = 30
MAX_SESSION_DURATION_S = 600


@dataclass(frozen=True, slots=True)
class NBackSettings:
    """Immutable per-session configuration."""

    game_mode: GameMode = GameMode.DUAL
    n_level: int = 2
    stimulus_duration_ms: int = 1500
    inter_stimulus_interval_ms: int = 2500
    session_duration_s: int = 120
    visual_match_key: str = "a"
    audio_match_key: str = "l"

    @property
    def trial_period_ms(self) -> int:
        return int(self.stimulus_duration_ms) + int(self.inter_stimulus_interval_ms)

    @property
    def session_duration_ms(self) -> float:
        return float(self.session_duration_s) * 1000.0

    @property
    def enabled_channels(self) -> tuple[Channel, ...]:
        if self.game_mode is GameMode.VISUAL:
            return (Channel.VISUAL,)
        if self.game_mode is GameMode.AUDIO:
            return (Channel.AUDIO,)
        return (Channel.VISUAL, Channel.AUDIO)

    def channel_enabled(self, channel: Channel) -> bool:
        return channel in self.enabled_channels

    def match_key(self, channel: Channel) -> str:
        return self.visual_match_key if channel is Channel.VISUAL else self.audio_match_key

    @property
    def has_key_conflict(self) -> bool:
        return self.visual_match_key.lower() == self.audio_match_key.lower()

    def problems(self) -> list[str]:
        """Human-readable reasons this configuration cannot run a session."""

        out: list[str] = []
        if self.trial_period_ms <= 0:
            out.append("Stimulus duration plus interval must be positive.")
        if self.n_level < 1:
            out.append("N-level must be at least 1.")
        if self.session_duration_s <= 0:
            out.append("Session duration must be positive.")
        if self.has_key_conflict:
            out.append("Visual and audio match keys must differ.")
        return out

    def clamped(self) -> "NBackSettings":
        return replace(
            self,
            n_level=_clamp_int(self.n_level, MIN_N_LEVEL, MAX_N_LEVEL),
            stimulus_duration_ms=_clamp_int(
                self.stimulus_duration_ms, MIN_STIMULUS_DURATION_MS, MAX_STIMULUS_DURATION_MS
            ),
            inter_stimulus_interval_ms=_clamp_int(self.inter_stimulus_interval_ms, MIN_ISI_MS, MAX_ISI_MS),
            session_duration_s=_clamp_int(
                self.session_duration_s, MIN_SESSION_DURATION_S, MAX_SESSION_DURATION_S
            ),
            visual_match_key=normalize_key(self.visual_match_key, fallback="a"),
            audio_match_key=normalize_key(self.audio_match_key, fallback="l"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "game_mode": self.game_mode.value,
            "n_level": int(self.n_level),
            "stimulus_duration_ms": int(self.stimulus_duration_ms),
            "inter_stimulus_interval_ms": int(self.inter_stimulus_interval_ms),
            "session_duration_s": int(self.session_duration_s),
            "visual_match_key": self.visual_match_key,
            "audio_match_key": self.audio_match_key,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NBackSettings":
        """Build clamped settings from stored data. Raises ValueError on bad types."""

        try:
            mode = GameMode(str(data["game_mode"]))
        except ValueError as exc:
            raise ValueError(f"unknown game mode: {data['game_mode']!r}") from exc
        return cls(
            game_mode=mode,
            n_level=int(data["n_level"]),
            stimulus_duration_ms=int(data["stimulus_duration_ms"]),
            inter_stimulus_interval_ms=int(data["inter_stimulus_interval_ms"]),
            session_duration_s=int(data["session_duration_s"]),
            visual_match_key=str(data["visual_match_key"]),
            audio_match_key=str(data["audio_match_key"]),
        ).clamped()


DEFAULT_SETTINGS = NBackSettings()

SETTINGS_KEYS: tuple[str, ...] = tuple(DEFAULT_SETTINGS.to_dict().keys())


def normalize_key(raw: str, *, fallback: str) -> str:
    token = str(raw).strip().lower()
    if len(token) != 1 or not token.isprintable():
        return fallback
    return token


def _clamp_int(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, int(value)))
