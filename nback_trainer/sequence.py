"""Stimulus sequence generation.

A session's whole sequence is built up front. From index N onwards each
enabled channel either repeats the value N trials back (a match) or draws a
fresh value that is guaranteed not to repeat it. A minimum number of matches
per channel (3 per 30 s of session) is guaranteed by forcing matches once the
remaining trials run short.
"""

from __future__ import annotations

import logging
import math
import random
from collections.abc import Sequence

from .cognitive_core import Channel, RandomSource, SeededRng, Stimulus
from .settings import AUDIO_LETTERS, GRID_CELL_COUNT, NBackSettings

logger = logging.getLogger(__name__)

MATCH_PROBABILITY = 0.25
MATCHES_PER_WINDOW = 3
MATCH_WINDOW_S = 30.0


def trial_count(settings: NBackSettings) -> int:
    period = settings.trial_period_ms
    if period <= 0:
        return 0
    return int(math.floor(settings.session_duration_ms / period))


def minimum_matches(settings: NBackSettings, channel: Channel) -> int:
    if not settings.channel_enabled(channel):
        return 0
    return int(math.ceil(settings.session_duration_s / MATCH_WINDOW_S * MATCHES_PER_WINDOW))


def should_force_match(*, remaining_trials: int, still_needed: int) -> bool:
    """Force a match when the remaining trials can barely cover what is still needed."""

    return still_needed > 0 and remaining_trials <= still_needed * 2


def count_matches(sequence: Sequence[Stimulus], n_level: int, channel: Channel) -> int:
    """Count true N-back matches on one channel, re-derived from the values."""

    total = 0
    for i in range(n_level, len(sequence)):
        current = sequence[i].value(channel)
        back = sequence[i - n_level].value(channel)
        if current is not None and back is not None and current == back:
            total += 1
    return total


class NBackSequenceGenerator:
    """Deterministic sequence generator owning its seeded RNG."""

    def __init__(self, *, seed: int | None = None, rng: RandomSource | None = None) -> None:
        if rng is None:
            if seed is None:
                raise ValueError("either seed or rng is required")
            rng = SeededRng(seed)
        self._rng = rng

    def generate(self, settings: NBackSettings) -> tuple[Stimulus, ...]:
        period = settings.trial_period_ms
        logger.debug(
            "Generating sequence: session=%ss stimulus=%sms isi=%sms period=%sms",
            settings.session_duration_s,
            settings.stimulus_duration_ms,
            settings.inter_stimulus_interval_ms,
            period,
        )
        if period <= 0:
            logger.error("Trial period is %sms; cannot generate a sequence.", period)
            return ()
        n = int(settings.n_level)
        if n < 1:
            logger.error("N-level is %d; it must be at least 1.", n)
            return ()

        num_trials = trial_count(settings)
        channels = settings.enabled_channels
        required = {ch: minimum_matches(settings, ch) for ch in channels}
        created = {ch: 0 for ch in channels}
        logger.debug("Trials: %d, required matches: %s", num_trials, required)

        values: dict[Channel, list[int | str | None]] = {
            Channel.VISUAL: [],
            Channel.AUDIO: [],
        }
        for i in range(num_trials):
            remaining = num_trials - i
            for ch in (Channel.VISUAL, Channel.AUDIO):
                if ch not in channels:
                    values[ch].append(None)
                    continue
                if i < n:
                    values[ch].append(self._draw(ch))
                    continue

                back = values[ch][i - n]
                needed = max(0, required[ch] - created[ch])
                forced = should_force_match(remaining_trials=remaining, still_needed=needed)
                if forced or self._rng.random() < MATCH_PROBABILITY:
                    values[ch].append(back)
                    created[ch] += 1
                else:
                    values[ch].append(self._draw(ch, avoid=back))

        sequence = tuple(
            Stimulus(visual=values[Channel.VISUAL][i], audio=values[Channel.AUDIO][i])  # type: ignore[arg-type]
            for i in range(num_trials)
        )
        logger.debug("Generated %d stimuli; matches created: %s", len(sequence), created)
        return sequence

    def _draw(self, channel: Channel, *, avoid: int | str | None = None) -> int | str:
        while True:
            if channel is Channel.VISUAL:
                value: int | str = self._rng.randrange(GRID_CELL_COUNT)
            else:
                value = self._rng.choice(AUDIO_LETTERS)
            if avoid is None or value != avoid:
                return value


def generate(settings: NBackSettings, *, rng: RandomSource | None = None, seed: int | None = None) -> tuple[Stimulus, ...]:
    """Generate a session's stimulus sequence.

    Pass ``rng`` or ``seed`` for a reproducible sequence; with neither, a
    fresh unseeded source is used.
    """

    if rng is None and seed is None:
        rng = random.Random()
    return NBackSequenceGenerator(seed=seed, rng=rng).generate(settings)
