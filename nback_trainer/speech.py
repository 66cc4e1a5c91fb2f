from __future__ import annotations

import importlib.util
import logging
import os
import shutil
import subprocess
import sys
import time
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

DISABLE_TTS_ENV = "NBACK_DISABLE_TTS"
TTS_BACKEND_ENV = "NBACK_TTS_BACKEND"


class Speaker(Protocol):
    def speak(self, text: str) -> None: ...
    def cancel(self) -> None: ...
    def is_speaking(self) -> bool: ...


class NullSpeaker:
    """Silent speaker for headless runs."""

    def speak(self, text: str) -> None:
        _ = text

    def cancel(self) -> None:
        return

    def is_speaking(self) -> bool:
        return False


class OfflineTtsSpeaker:
    """Best-effort offline TTS, one utterance per isolated subprocess.

    Only one utterance is in flight at a time; ``speak()`` while an utterance
    is still playing is dropped. Callers check ``is_speaking()`` first.
    """

    _rate_wpm = 160
    _max_utterance_s = 4.0

    def __init__(self) -> None:
        self._enabled = False
        self._backends: list[str] = []
        self._backend: str | None = None
        self._active_proc: subprocess.Popen[bytes] | None = None
        self._active_started_s = 0.0

        if os.environ.get(DISABLE_TTS_ENV, "0") == "1":
            return
        if os.environ.get("SDL_AUDIODRIVER", "").strip().lower() == "dummy":
            # Headless runs stay silent.
            return

        self._backends = self._resolve_backends()
        self._backend = self._backends[0] if self._backends else None
        self._enabled = self._backend is not None
        if not self._enabled:
            logger.warning("No offline text-to-speech backend found; audio stimuli will be silent.")

    @property
    def enabled(self) -> bool:
        return bool(self._enabled)

    @property
    def backend(self) -> str | None:
        return self._backend

    def speak(self, text: str) -> None:
        if not self._enabled:
            return
        phrase = " ".join(str(text).strip().split())
        if phrase == "":
            return
        if self.is_speaking():
            logger.debug("Dropped utterance %r: previous one still playing.", phrase)
            return

        while self._enabled:
            launched = self._launch_process(phrase)
            if launched is not None:
                self._active_proc = launched
                self._active_started_s = time.monotonic()
                return
            self._drop_current_backend()

    def is_speaking(self) -> bool:
        proc = self._active_proc
        if proc is None:
            return False
        if proc.poll() is not None:
            self._active_proc = None
            return False
        if (time.monotonic() - self._active_started_s) > self._max_utterance_s:
            self._terminate_process(proc)
            self._active_proc = None
            return False
        return True

    def cancel(self) -> None:
        proc = self._active_proc
        self._active_proc = None
        if proc is not None:
            self._terminate_process(proc)

    @staticmethod
    def _terminate_process(proc: subprocess.Popen[bytes]) -> None:
        try:
            proc.terminate()
        except OSError:
            return
        try:
            proc.wait(timeout=0.5)
        except subprocess.TimeoutExpired:
            try:
                proc.kill()
            except OSError:
                pass

    @staticmethod
    def _resolve_backends() -> list[str]:
        supported = ("pyttsx3-subprocess", "say", "powershell", "espeak")
        forced = os.environ.get(TTS_BACKEND_ENV, "").strip().lower()
        if forced in supported and OfflineTtsSpeaker._backend_available(forced):
            return [forced]

        candidates: list[str] = []
        if sys.platform == "darwin":
            candidates.append("say")
        if os.name == "nt":
            candidates.append("powershell")
        candidates.extend(("espeak", "pyttsx3-subprocess"))

        seen: set[str] = set()
        resolved: list[str] = []
        for name in candidates:
            if name in seen:
                continue
            seen.add(name)
            if OfflineTtsSpeaker._backend_available(name):
                resolved.append(name)
        return resolved

    @staticmethod
    def _backend_available(name: str) -> bool:
        if name == "say":
            return (shutil.which("say") is not None) or Path("/usr/bin/say").exists()
        if name == "powershell":
            return (shutil.which("powershell") is not None) or (shutil.which("pwsh") is not None)
        if name == "pyttsx3-subprocess":
            return importlib.util.find_spec("pyttsx3") is not None
        if name == "espeak":
            return shutil.which("espeak") is not None
        return False

    def _drop_current_backend(self) -> None:
        backend = self._backend
        if backend is None:
            self._enabled = False
            return
        logger.warning("Text-to-speech backend %s failed; trying the next one.", backend)
        self._backends = [name for name in self._backends if name != backend]
        self._backend = self._backends[0] if self._backends else None
        self._enabled = self._backend is not None

    def _launch_process(self, text: str) -> subprocess.Popen[bytes] | None:
        backend = self._backend
        if backend is None:
            return None

        try:
            if backend == "pyttsx3-subprocess":
                script = (
                    "import sys\n"
                    "txt=' '.join(sys.argv[1:]).strip()\n"
                    "import pyttsx3\n"
                    "e=pyttsx3.init()\n"
                    f"e.setProperty('rate', {self._rate_wpm})\n"
                    "e.setProperty('volume', 0.8)\n"
                    "e.say(txt)\n"
                    "e.runAndWait()\n"
                )
                return subprocess.Popen(
                    [sys.executable, "-c", script, text],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )

            if backend == "say":
                return subprocess.Popen(
                    [shutil.which("say") or "/usr/bin/say", "-r", str(self._rate_wpm), text],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )

            if backend == "powershell":
                ps_bin = shutil.which("powershell") or shutil.which("pwsh")
                if ps_bin is None:
                    return None
                script = (
                    "Add-Type -AssemblyName System.Speech; "
                    "$s=New-Object System.Speech.Synthesis.SpeechSynthesizer; "
                    "$s.Rate=0; "
                    "$txt=($args -join ' '); "
                    "$s.Speak($txt);"
                )
                return subprocess.Popen(
                    [ps_bin, "-NoProfile", "-NonInteractive", "-Command", script, text],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )

            if backend == "espeak":
                return subprocess.Popen(
                    ["espeak", "-s", str(self._rate_wpm), text],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
        except OSError as exc:
            logger.warning("Could not launch %s: %s", backend, exc)
            return None
        return None


def build_speaker() -> Speaker:
    speaker = OfflineTtsSpeaker()
    if speaker.enabled:
        return speaker
    return NullSpeaker()
