from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

import pytest

from nback_trainer.cognitive_core import Channel, GameMode
from nback_trainer.settings import (
    DEFAULT_SETTINGS,
    MAX_N_LEVEL,
    MIN_ISI_MS,
    NBackSettings,
    normalize_key,
)
from nback_trainer.settings_store import SettingsStore


def test_defaults_match_trainer_defaults() -> None:
    s = DEFAULT_SETTINGS
    assert s.game_mode is GameMode.DUAL
    assert (s.n_level, s.stimulus_duration_ms, s.inter_stimulus_interval_ms, s.session_duration_s) == (
        2,
        1500,
        2500,
        120,
    )
    assert (s.visual_match_key, s.audio_match_key) == ("a", "l")
    assert s.trial_period_ms == 4000
    assert s.enabled_channels == (Channel.VISUAL, Channel.AUDIO)
    assert s.problems() == []


def test_clamped_pulls_values_into_bounds() -> None:
    s = NBackSettings(n_level=9, inter_stimulus_interval_ms=10, visual_match_key="  Q ", audio_match_key="xyz").clamped()
    assert s.n_level == MAX_N_LEVEL
    assert s.inter_stimulus_interval_ms == MIN_ISI_MS
    assert s.visual_match_key == "q"
    assert s.audio_match_key == "l"


def test_key_conflict_is_reported() -> None:
    s = NBackSettings(visual_match_key="k", audio_match_key="K")
    assert s.has_key_conflict is True
    assert any("keys" in p for p in s.problems())


@pytest.mark.parametrize(("raw", "expected"), [("A", "a"), (" ", "x"), ("", "x"), ("ab", "x"), ("7", "7")])
def test_normalize_key(raw: str, expected: str) -> None:
    assert normalize_key(raw, fallback="x") == expected


def test_from_dict_rejects_unknown_mode() -> None:
    data = DEFAULT_SETTINGS.to_dict()
    data["game_mode"] = "Tactile"
    with pytest.raises(ValueError):
        NBackSettings.from_dict(data)


def test_store_missing_file_uses_defaults(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "settings.json")
    assert store.settings == DEFAULT_SETTINGS
    assert not store.path.exists()


def test_store_update_persists_and_reloads(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "settings.json"
    store = SettingsStore(path)
    saved = store.update(replace(DEFAULT_SETTINGS, game_mode=GameMode.AUDIO, n_level=4, audio_match_key="j"))

    assert path.exists()
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["version"] == 1
    assert payload["settings"]["game_mode"] == "Audio"

    reloaded = SettingsStore(path)
    assert reloaded.settings == saved
    assert reloaded.settings.audio_match_key == "j"


def test_store_ignores_incomplete_payload(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    data = DEFAULT_SETTINGS.to_dict()
    data["n_level"] = 4
    del data["audio_match_key"]
    path.write_text(json.dumps({"version": 1, "settings": data}), encoding="utf-8")

    assert SettingsStore(path).settings == DEFAULT_SETTINGS


def test_store_ignores_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")
    assert SettingsStore(path).settings == DEFAULT_SETTINGS


def test_store_clamps_out_of_range_values(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    data = DEFAULT_SETTINGS.to_dict()
    data["session_duration_s"] = 5
    path.write_text(json.dumps({"version": 1, "settings": data}), encoding="utf-8")
    assert SettingsStore(path).settings.session_duration_s == 30


def test_default_path_honours_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    target = tmp_path / "custom.json"
    monkeypatch.setenv("NBACK_SETTINGS_PATH", str(target))
    assert SettingsStore.default_path() == target

    monkeypatch.delenv("NBACK_SETTINGS_PATH")
    assert SettingsStore.default_path() == Path.home() / ".nback_trainer_settings.json"
