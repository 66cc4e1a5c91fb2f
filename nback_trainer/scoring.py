from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .cognitive_core import Channel, ChannelMetrics, NBackResults, Stimulus, TrialResponse
from .settings import NBackSettings


@dataclass(slots=True)
class _Tally:
    hits: int = 0
    misses: int = 0
    false_alarms: int = 0
    total_matches: int = 0

    def freeze(self) -> ChannelMetrics:
        errors = self.misses + self.false_alarms
        if self.total_matches > 0:
            rate = (self.total_matches - errors) / self.total_matches * 100.0
        else:
            rate = 100.0 if errors == 0 else 0.0
        return ChannelMetrics(
            hits=self.hits,
            misses=self.misses,
            false_alarms=self.false_alarms,
            errors=errors,
            total_matches=self.total_matches,
            rate=float(rate),
        )


def score_session(
    settings: NBackSettings,
    sequence: Sequence[Stimulus],
    responses: Sequence[TrialResponse],
) -> NBackResults:
    """Score a completed session. Pure; a missing response counts as unanswered."""

    n = int(settings.n_level)
    tallies = {ch: _Tally() for ch in settings.enabled_channels}

    for i in range(max(n, 0), len(sequence)):
        current = sequence[i]
        back = sequence[i - n]
        response = responses[i] if i < len(responses) else TrialResponse()

        for channel, tally in tallies.items():
            value = current.value(channel)
            back_value = back.value(channel)
            if value is None or back_value is None:
                continue
            pressed = response.get(channel) is True
            if value == back_value:
                tally.total_matches += 1
                if pressed:
                    tally.hits += 1
                else:
                    tally.misses += 1
            elif pressed:
                tally.false_alarms += 1

    metrics = {ch: tally.freeze() for ch, tally in tallies.items()}
    total_hits = sum(m.hits for m in metrics.values())
    total_matches = sum(m.total_matches for m in metrics.values())
    overall = 0.0 if total_matches == 0 else total_hits / total_matches * 100.0

    return NBackResults(
        settings=settings,
        total_trials=len(sequence),
        visual=metrics.get(Channel.VISUAL),
        audio=metrics.get(Channel.AUDIO),
        overall_success_rate=float(overall),
    )
