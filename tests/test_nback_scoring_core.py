from __future__ import annotations

import pytest

from nback_trainer.cognitive_core import Channel, GameMode, Stimulus, TrialResponse
from nback_trainer.scoring import score_session
from nback_trainer.sequence import NBackSequenceGenerator, count_matches
from nback_trainer.settings import NBackSettings


def _visual(*positions: int) -> tuple[Stimulus, ...]:
    return tuple(Stimulus(visual=p, audio=None) for p in positions)


@pytest.mark.parametrize("mode", list(GameMode))
def test_no_presses_turns_every_match_into_a_miss(mode: GameMode) -> None:
    settings = NBackSettings(game_mode=mode)
    seq = NBackSequenceGenerator(seed=11).generate(settings)

    results = score_session(settings, seq, [TrialResponse() for _ in seq])

    for channel in settings.enabled_channels:
        m = results.metrics(channel)
        assert m is not None
        assert m.hits == 0
        assert m.false_alarms == 0
        assert m.misses == m.total_matches == count_matches(seq, settings.n_level, channel)
        assert m.rate == (0.0 if m.total_matches > 0 else 100.0)
    assert results.overall_success_rate == 0.0
    assert results.total_trials == len(seq)


def test_disabled_channel_has_no_metrics() -> None:
    settings = NBackSettings(game_mode=GameMode.VISUAL)
    results = score_session(settings, _visual(0, 1, 0), [])
    assert results.audio is None
    assert results.visual is not None


def test_scenario_hit_then_miss() -> None:
    a, b, c = 0, 4, 8
    settings = NBackSettings(game_mode=GameMode.VISUAL, n_level=2)
    seq = _visual(a, b, a, c, a)
    responses = [TrialResponse() for _ in seq]
    responses[2].mark_pressed(Channel.VISUAL)

    m = score_session(settings, seq, responses).visual
    assert m is not None
    assert m.total_matches == 2
    assert m.hits == 1
    assert m.misses == 1
    assert m.false_alarms == 0
    assert m.errors == 1
    # (total_matches - errors) / total_matches
    assert m.rate == pytest.approx(50.0)


def test_false_alarm_counts_as_error() -> None:
    settings = NBackSettings(game_mode=GameMode.VISUAL, n_level=1)
    seq = _visual(3, 5, 5)
    responses = [TrialResponse() for _ in seq]
    responses[1].mark_pressed(Channel.VISUAL)
    responses[2].mark_pressed(Channel.VISUAL)

    results = score_session(settings, seq, responses)
    m = results.visual
    assert m is not None
    assert (m.hits, m.misses, m.false_alarms, m.errors, m.total_matches) == (1, 0, 1, 1, 1)
    assert m.rate == pytest.approx(0.0)
    assert results.overall_success_rate == pytest.approx(100.0)


def test_n_level_at_or_beyond_length_is_perfect_with_no_matches() -> None:
    settings = NBackSettings(game_mode=GameMode.DUAL, n_level=5)
    seq = tuple(Stimulus(visual=i, audio="C") for i in range(4))

    results = score_session(settings, seq, [TrialResponse() for _ in seq])
    for channel in (Channel.VISUAL, Channel.AUDIO):
        m = results.metrics(channel)
        assert m is not None
        assert m.total_matches == 0
        assert m.rate == 100.0
    assert results.overall_success_rate == 0.0


def test_overall_rate_sums_hits_over_both_channels() -> None:
    settings = NBackSettings(game_mode=GameMode.DUAL, n_level=1)
    seq = (
        Stimulus(visual=1, audio="C"),
        Stimulus(visual=1, audio="C"),
        Stimulus(visual=1, audio="C"),
    )
    responses = [TrialResponse(), TrialResponse(visual=True, audio=True), TrialResponse(visual=True)]

    results = score_session(settings, seq, responses)
    assert results.visual is not None and results.audio is not None
    assert results.visual.hits == 2
    assert results.audio.hits == 1
    assert results.overall_success_rate == pytest.approx(75.0)
