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

log = logging.getLogger(__name__)


class SpeechSignal:
    """Completion signal for one utterance.

    Resolved exactly once, on completion, failure or cancellation. Callers poll
    `done`; nothing is ever raised through the signal.
    """

    __slots__ = ("text", "_done", "_ok")

    def __init__(self, text: str) -> None:
        self.text = text
        self._done = False
        self._ok = False

    @property
    def done(self) -> bool:
        return self._done

    @property
    def ok(self) -> bool:
        return self._ok

    def resolve(self, *, ok: bool = True) -> None:
        if self._done:
            return
        self._done = True
        self._ok = bool(ok)


class SpeechCapability(Protocol):
    def speak(self, text: str) -> SpeechSignal: ...
    def cancel(self) -> None: ...
    def update(self) -> None: ...


class SilentSpeech:
    """No-op capability: every utterance completes immediately."""

    def speak(self, text: str) -> SpeechSignal:
        signal = SpeechSignal(text)
        signal.resolve(ok=True)
        return signal

    def cancel(self) -> None:
        return

    def update(self) -> None:
        return


class OfflineTtsSpeech:
    """Best-effort offline TTS via isolated subprocesses.

    Only one utterance is ever in flight: a new speak() supersedes (and resolves)
    whatever is still queued or playing. Backend failures resolve the signal.
    """

    _max_utterance_s = 6.0
    _rate_wpm = 150  # slightly slow for clarity

    def __init__(self) -> None:
        self._enabled = False
        self._backends: list[str] = []
        self._backend: str | None = None
        self._pending: SpeechSignal | None = None
        self._active: SpeechSignal | None = None
        self._active_proc: subprocess.Popen[bytes] | None = None
        self._active_started_s = 0.0

        if os.environ.get("LEXISCAN_DISABLE_TTS", "0") == "1":
            return
        if os.environ.get("SDL_AUDIODRIVER", "").strip().lower() == "dummy":
            # Keep automated/headless runs silent and stable.
            return

        self._backends = self._resolve_backends()
        self._backend = self._backends[0] if self._backends else None
        self._enabled = self._backend is not None
        log.debug("TTS backend: %s", self._backend)

    @property
    def enabled(self) -> bool:
        return bool(self._enabled)

    def speak(self, text: str) -> SpeechSignal:
        phrase = " ".join(str(text).strip().split())
        signal = SpeechSignal(phrase)
        if not self._enabled or phrase == "":
            signal.resolve(ok=False)
            return signal
        self.cancel()
        self._pending = signal
        self.update()
        return signal

    def update(self) -> None:
        proc = self._active_proc
        if proc is not None:
            if proc.poll() is None:
                if (time.monotonic() - self._active_started_s) > self._max_utterance_s:
                    log.warning("TTS utterance exceeded %.1fs; terminating", self._max_utterance_s)
                    self._terminate_process(proc)
                    self._finish_active(ok=False)
            else:
                self._finish_active(ok=proc.returncode == 0)

        if self._active_proc is not None or self._pending is None:
            return

        while self._pending is not None and self._enabled:
            pending = self._pending
            try:
                launched = self._launch_process(pending.text)
            except OSError:
                launched = None
            except Exception:
                # Bad text, not a bad backend: fail this utterance only.
                log.warning("TTS could not speak %r", pending.text, exc_info=True)
                self._pending = None
                pending.resolve(ok=False)
                return
            if launched is not None:
                self._active = self._pending
                self._pending = None
                self._active_proc = launched
                self._active_started_s = time.monotonic()
                return
            self._drop_current_backend()

        if self._pending is not None:
            self._pending.resolve(ok=False)
            self._pending = None

    def cancel(self) -> None:
        if self._pending is not None:
            self._pending.resolve(ok=False)
            self._pending = None
        proc = self._active_proc
        if proc is not None:
            self._terminate_process(proc)
        self._finish_active(ok=False)

    def _finish_active(self, *, ok: bool) -> None:
        if self._active is not None:
            self._active.resolve(ok=ok)
        self._active = None
        self._active_proc = None

    @staticmethod
    def _terminate_process(proc: subprocess.Popen[bytes]) -> None:
        try:
            proc.terminate()
        except Exception:
            return
        try:
            proc.wait(timeout=0.5)
        except Exception:
            try:
                proc.kill()
            except Exception:
                log.debug("could not kill TTS process %s", proc.pid, exc_info=True)

    @staticmethod
    def _resolve_backends() -> list[str]:
        forced = os.environ.get("LEXISCAN_TTS_BACKEND", "").strip().lower()
        if forced in _SUPPORTED_BACKENDS and OfflineTtsSpeech._backend_available(forced):
            return [forced]

        candidates: list[str] = []
        if sys.platform == "darwin":
            candidates.append("say")
        if os.name == "nt":
            candidates.append("powershell")
        candidates.extend(("pyttsx3-subprocess", "espeak"))
        return [name for name in dict.fromkeys(candidates) if OfflineTtsSpeech._backend_available(name)]

    @staticmethod
    def _backend_available(name: str) -> bool:
        if name == "pyttsx3-subprocess":
            return importlib.util.find_spec("pyttsx3") is not None
        if name == "say" and Path("/usr/bin/say").exists():
            return True
        return any(shutil.which(exe) is not None for exe in _BACKEND_EXECUTABLES.get(name, ()))

    def _drop_current_backend(self) -> None:
        backend = self._backend
        log.warning("TTS backend %s failed; dropping it", backend)
        self._backends = [name for name in self._backends if name != backend]
        self._backend = self._backends[0] if self._backends else None
        self._enabled = self._backend is not None

    def _command(self, backend: str, text: str) -> list[str] | None:
        rate = str(self._rate_wpm)
        if backend == "pyttsx3-subprocess":
            return [sys.executable, "-c", _PYTTSX3_SCRIPT.format(rate=rate), text]
        exe = next((found for found in map(shutil.which, _BACKEND_EXECUTABLES.get(backend, ())) if found), None)
        if backend == "say":
            return [exe or "/usr/bin/say", "-r", rate, text]
        if exe is None:
            return None
        if backend == "powershell":
            return [exe, "-NoProfile", "-NonInteractive", "-Command", _POWERSHELL_SCRIPT, text]
        if backend == "espeak":
            return [exe, "-s", rate, text]
        return None

    def _launch_process(self, text: str) -> subprocess.Popen[bytes] | None:
        backend = self._backend
        if backend is None:
            return None
        argv = self._command(backend, text)
        if argv is None:
            return None
        return subprocess.Popen(argv, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)


_SUPPORTED_BACKENDS = ("pyttsx3-subprocess", "say", "powershell", "espeak")

_BACKEND_EXECUTABLES: dict[str, tuple[str, ...]] = {
    "say": ("say",),
    "powershell": ("powershell", "pwsh"),
    "espeak": ("espeak",),
}

_PYTTSX3_SCRIPT = (
    "import sys\n"
    "txt=' '.join(sys.argv[1:]).strip()\n"
    "import pyttsx3\n"
    "e=pyttsx3.init()\n"
    "e.setProperty('rate', {rate})\n"
    "e.say(txt)\n"
    "e.runAndWait()\n"
)

_POWERSHELL_SCRIPT = (
    "Add-Type -AssemblyName System.Speech; "
    "$s=New-Object System.Speech.Synthesis.SpeechSynthesizer; "
    "$s.Rate=-1; "
    "$txt=($args -join ' '); "
    "$s.Speak($txt);"
)
