"""Per-kind trial presentation.

Each presenter owns only what differs between task kinds: what is shown
first, which waits happen before the response window opens, and how the
option set is built. The orchestrator drives them through the same two calls:

    presenter.begin(trial, config)   # stimulus onset
    presenter.advance()              # polled every tick; returns a ResponseWindow
                                     # once options are rendered

Adapter exceptions propagate out of begin/advance; the orchestrator turns
them into a forced timeout for the trial.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar, Protocol

from .catalog import NO, YES, PresentationKind, TrialConfig, TrialSpec
from .clock import Clock, CountdownTimer
from .speech import SpeechCapability, SpeechSignal

if TYPE_CHECKING:
    from .orchestrator import OrchestratorConfig

log = logging.getLogger(__name__)

BINARY_OPTIONS: tuple[str, str] = (YES, NO)


@dataclass(frozen=True, slots=True)
class StimulusView:
    text: str
    masked: bool = False
    audio_cue: bool = False


class PresentationAdapter(Protocol):
    def render_instructions(self, title: str, text: str) -> None: ...
    def render_progress(self, current: int, total: int) -> None: ...
    def render_stimulus(self, view: StimulusView) -> None: ...
    def render_options(self, values: tuple[str, ...]) -> None: ...
    def render_binary_choice(self) -> None: ...
    def clear_presentation(self) -> None: ...
    def on_session_finished(self) -> None: ...


@dataclass(frozen=True, slots=True)
class ResponseWindow:
    target: str
    options: tuple[str, ...]
    binary: bool = False
    stimulus: str | None = None
    is_real_word: bool | None = None


def shuffled(values: tuple[str, ...], rng: random.Random) -> tuple[str, ...]:
    # Fisher-Yates; each call is an independent uniform permutation.
    out = list(values)
    for i in range(len(out) - 1, 0, -1):
        j = rng.randint(0, i)
        out[i], out[j] = out[j], out[i]
    return tuple(out)


def option_set(trial: TrialSpec) -> tuple[str, ...]:
    """Target plus distractors, duplicates dropped, target first."""
    return tuple(dict.fromkeys((trial.target or "", *trial.distractors)))


class TrialPresenter:
    kind: ClassVar[PresentationKind]

    def __init__(
        self,
        *,
        adapter: PresentationAdapter,
        speech: SpeechCapability,
        clock: Clock,
        rng: random.Random,
        config: OrchestratorConfig,
    ) -> None:
        self._adapter = adapter
        self._speech = speech
        self._clock = clock
        self._rng = rng
        self._config = config
        self._timer = CountdownTimer(clock)
        self._trial: TrialSpec | None = None
        self._trial_config: TrialConfig | None = None

    def begin(self, trial: TrialSpec, config: TrialConfig) -> None:
        self._timer.cancel()
        self._trial = trial
        self._trial_config = config
        self._on_begin(trial, config)

    def advance(self) -> ResponseWindow | None:
        if self._trial is None:
            return None
        window = self._poll(self._trial)
        if window is not None:
            self._trial = None
            self._timer.cancel()
        return window

    def cancel(self) -> None:
        self._timer.cancel()
        self._trial = None

    def _on_begin(self, trial: TrialSpec, config: TrialConfig) -> None:
        raise NotImplementedError

    def _poll(self, trial: TrialSpec) -> ResponseWindow | None:
        raise NotImplementedError

    def _open_choice(self, trial: TrialSpec) -> ResponseWindow:
        options = shuffled(option_set(trial), self._rng)
        self._adapter.render_options(options)
        return ResponseWindow(target=trial.expected, options=options)


class StandardPresenter(TrialPresenter):
    kind = PresentationKind.STANDARD

    def _on_begin(self, trial: TrialSpec, config: TrialConfig) -> None:
        # Without show_stimulus the subject answers from the options alone.
        if config.show_stimulus:
            self._adapter.render_stimulus(StimulusView(text=trial.target or ""))

    def _poll(self, trial: TrialSpec) -> ResponseWindow | None:
        return self._open_choice(trial)


class AudioPresenter(TrialPresenter):
    """Speak first; options and timing start only after playback ends."""

    kind = PresentationKind.AUDIO

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._signal: SpeechSignal | None = None

    def _on_begin(self, trial: TrialSpec, config: TrialConfig) -> None:
        self._adapter.render_stimulus(StimulusView(text="", audio_cue=True))
        self._signal = self._speech.speak(trial.spoken_text)
        self._timer.start(self._config.speech_ceiling_ms)

    def _poll(self, trial: TrialSpec) -> ResponseWindow | None:
        signal = self._signal
        if signal is not None and not signal.done:
            if not self._timer.fired():
                return None
            log.warning("speech for %r did not finish within ceiling; opening options", signal.text)
            self._speech.cancel()
        self._signal = None
        return self._open_choice(trial)

    def cancel(self) -> None:
        super().cancel()
        if self._signal is not None and not self._signal.done:
            self._speech.cancel()
        self._signal = None


class MaskingPresenter(TrialPresenter):
    """Flash the target, mask it, then ask. No options exist until the mask ends."""

    kind = PresentationKind.MASKING

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._phase = "idle"

    @property
    def phase(self) -> str:
        return self._phase

    def _on_begin(self, trial: TrialSpec, config: TrialConfig) -> None:
        flash_ms = self._config.default_flash_ms if config.flash_ms is None else config.flash_ms
        self._adapter.render_stimulus(StimulusView(text=trial.target or ""))
        self._phase = "flash"
        self._timer.start(flash_ms)

    def _poll(self, trial: TrialSpec) -> ResponseWindow | None:
        assert self._trial_config is not None
        if self._phase == "flash":
            if not self._timer.fired():
                return None
            mask_ms = self._trial_config.mask_ms
            if mask_ms is None:
                mask_ms = self._config.default_mask_ms
            self._adapter.render_stimulus(StimulusView(text=trial.target or "", masked=True))
            self._phase = "mask"
            self._timer.start(mask_ms)
            return None
        if self._phase == "mask":
            if not self._timer.fired():
                return None
            self._adapter.render_stimulus(StimulusView(text=self._config.neutral_placeholder))
            self._phase = "idle"
            return self._open_choice(trial)
        return None

    def cancel(self) -> None:
        super().cancel()
        self._phase = "idle"


class BinaryPresenter(TrialPresenter):
    kind = PresentationKind.BINARY

    def _on_begin(self, trial: TrialSpec, config: TrialConfig) -> None:
        self._adapter.render_stimulus(StimulusView(text=trial.stimulus or ""))

    def _poll(self, trial: TrialSpec) -> ResponseWindow | None:
        self._adapter.render_binary_choice()
        return ResponseWindow(
            target=trial.expected,
            options=BINARY_OPTIONS,
            binary=True,
            stimulus=trial.stimulus,
            is_real_word=trial.is_real,
        )


PRESENTERS: dict[PresentationKind, type[TrialPresenter]] = {
    cls.kind: cls for cls in (StandardPresenter, AudioPresenter, MaskingPresenter, BinaryPresenter)
}


def presenter_for(
    kind: PresentationKind,
    *,
    adapter: PresentationAdapter,
    speech: SpeechCapability,
    clock: Clock,
    rng: random.Random,
    config: OrchestratorConfig,
) -> TrialPresenter:
    return PRESENTERS[kind](adapter=adapter, speech=speech, clock=clock, rng=rng, config=config)
