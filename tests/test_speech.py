from __future__ import annotations

import pytest

from nback_trainer.speech import NullSpeaker, OfflineTtsSpeaker, build_speaker


def test_null_speaker_is_silent() -> None:
    speaker = NullSpeaker()
    speaker.speak("C")
    speaker.cancel()
    assert speaker.is_speaking() is False


def test_disable_env_turns_tts_off(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NBACK_DISABLE_TTS", "1")
    speaker = OfflineTtsSpeaker()
    assert speaker.enabled is False
    speaker.speak("K")
    assert speaker.is_speaking() is False
    assert isinstance(build_speaker(), NullSpeaker)


def test_dummy_audio_driver_turns_tts_off(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("NBACK_DISABLE_TTS", raising=False)
    monkeypatch.setenv("SDL_AUDIODRIVER", "dummy")
    assert OfflineTtsSpeaker().enabled is False
