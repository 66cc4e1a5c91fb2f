from __future__ import annotations

import math
import random

import pytest

from nback_trainer.cognitive_core import Channel, GameMode, SeededRng
from nback_trainer.sequence import (
    NBackSequenceGenerator,
    count_matches,
    generate,
    minimum_matches,
    should_force_match,
    trial_count,
)
from nback_trainer.settings import AUDIO_LETTERS, GRID_CELL_COUNT, NBackSettings


def _settings(**overrides: object) -> NBackSettings:
    return NBackSettings(**overrides)  # type: ignore[arg-type]


@pytest.mark.parametrize(
    ("session_s", "stim_ms", "isi_ms"),
    [(120, 1500, 2500), (30, 500, 500), (600, 3000, 5000), (95, 1200, 1700)],
)
def test_sequence_length_is_floor_of_session_over_period(session_s: int, stim_ms: int, isi_ms: int) -> None:
    s = _settings(session_duration_s=session_s, stimulus_duration_ms=stim_ms, inter_stimulus_interval_ms=isi_ms)
    seq = NBackSequenceGenerator(seed=7).generate(s)

    expected = math.floor(session_s * 1000 / (stim_ms + isi_ms))
    assert len(seq) == expected
    assert trial_count(s) == expected


def test_channel_exclusivity_per_mode() -> None:
    visual = NBackSequenceGenerator(seed=1).generate(_settings(game_mode=GameMode.VISUAL))
    audio = NBackSequenceGenerator(seed=1).generate(_settings(game_mode=GameMode.AUDIO))
    dual = NBackSequenceGenerator(seed=1).generate(_settings(game_mode=GameMode.DUAL))

    assert visual and audio and dual
    assert all(s.audio is None and s.visual is not None for s in visual)
    assert all(s.visual is None and s.audio is not None for s in audio)
    assert all(s.visual is not None and s.audio is not None for s in dual)


def test_values_stay_in_their_alphabets() -> None:
    seq = NBackSequenceGenerator(seed=99).generate(_settings())
    assert all(0 <= s.visual < GRID_CELL_COUNT for s in seq)  # type: ignore[operator]
    assert all(s.audio in AUDIO_LETTERS for s in seq)


@pytest.mark.parametrize("seed", range(25))
def test_minimum_matches_for_default_two_minute_session(seed: int) -> None:
    s = _settings(n_level=2, session_duration_s=120)
    seq = NBackSequenceGenerator(seed=seed).generate(s)

    required = math.ceil(120 / 30 * 3)
    assert required == 12
    assert minimum_matches(s, Channel.VISUAL) == required
    # Re-derived from the values, not from generator counters.
    assert count_matches(seq, 2, Channel.VISUAL) >= required
    assert count_matches(seq, 2, Channel.AUDIO) >= required


def test_minimum_matches_is_zero_for_disabled_channel() -> None:
    s = _settings(game_mode=GameMode.VISUAL)
    assert minimum_matches(s, Channel.AUDIO) == 0
    assert minimum_matches(s, Channel.VISUAL) == 12


class _NeverMatchRng:
    """Never rolls a random match and keeps trying to repeat the N-back value."""

    def __init__(self) -> None:
        self._inner = random.Random(3)

    def random(self) -> float:
        return 0.99

    def randrange(self, stop: int) -> int:
        return self._inner.randrange(min(stop, 2))

    def choice(self, seq):  # type: ignore[no-untyped-def]
        return seq[self._inner.randrange(min(len(seq), 2))]


def test_non_matches_never_collide_with_n_back_value() -> None:
    # With no random matches every match in the output is a forced one; all
    # other positions must differ from the value N trials back.
    s = _settings(n_level=2, session_duration_s=600, stimulus_duration_ms=500, inter_stimulus_interval_ms=500)
    seq = NBackSequenceGenerator(rng=_NeverMatchRng()).generate(s)

    required = minimum_matches(s, Channel.VISUAL)
    assert count_matches(seq, 2, Channel.VISUAL) == required
    assert count_matches(seq, 2, Channel.AUDIO) == required


def test_forced_matches_cover_short_sessions() -> None:
    s = _settings(n_level=2, session_duration_s=30)
    seq = NBackSequenceGenerator(rng=_NeverMatchRng()).generate(s)
    assert len(seq) == 7
    assert count_matches(seq, 2, Channel.VISUAL) >= 3


def test_should_force_match_rule() -> None:
    assert should_force_match(remaining_trials=4, still_needed=2) is True
    assert should_force_match(remaining_trials=5, still_needed=2) is False
    assert should_force_match(remaining_trials=1, still_needed=0) is False


def test_generation_is_deterministic_for_seed() -> None:
    s = _settings()
    a = NBackSequenceGenerator(seed=4242).generate(s)
    b = NBackSequenceGenerator(seed=4242).generate(s)
    c = generate(s, rng=SeededRng(4242))
    assert a == b == c
    assert a != NBackSequenceGenerator(seed=4243).generate(s)


def test_non_positive_trial_period_yields_empty_sequence() -> None:
    s = _settings(stimulus_duration_ms=0, inter_stimulus_interval_ms=0)
    assert NBackSequenceGenerator(seed=1).generate(s) == ()
    assert trial_count(s) == 0


def test_invalid_n_level_yields_empty_sequence() -> None:
    assert NBackSequenceGenerator(seed=1).generate(_settings(n_level=0)) == ()


def test_generator_requires_seed_or_rng() -> None:
    with pytest.raises(ValueError):
        NBackSequenceGenerator()


def test_module_generate_without_seed_still_produces_full_sequence() -> None:
    assert len(generate(_settings())) == 30
