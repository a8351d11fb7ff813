"""Screening run state machine.

    IDLE -> INSTRUCTIONS -> RUNNING -> (PRESENTING_STIMULUS -> AWAITING_RESPONSE
         -> TRANSITIONING)* -> TASK_COMPLETE -> INSTRUCTIONS | FINISHED

Deterministic and tick driven: all time comes from the injected Clock and the
host calls update() once per frame. `input_locked` is the only gate on
responses; anything delivered while it is set is dropped, never queued.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum

from .catalog import DEFAULT_CATALOG, PresentationKind, TaskDefinition, TrialSpec, normalize_binary
from .clock import Clock, CountdownTimer
from .metrics import MetricsAggregator, SessionData, TrialContext
from .presenters import (
    PresentationAdapter,
    ResponseWindow,
    TrialPresenter,
    presenter_for,
)
from .report import export_csv, export_json
from .speech import SilentSpeech, SpeechCapability

log = logging.getLogger(__name__)


class ScreeningState(StrEnum):
    IDLE = "idle"
    INSTRUCTIONS = "instructions"
    RUNNING = "running"
    PRESENTING_STIMULUS = "presenting_stimulus"
    AWAITING_RESPONSE = "awaiting_response"
    TRANSITIONING = "transitioning"
    TASK_COMPLETE = "task_complete"
    FINISHED = "finished"


@dataclass(frozen=True, slots=True)
class OrchestratorConfig:
    transition_pause_ms: int = 200
    speech_ceiling_ms: int = 4000
    default_flash_ms: int = 400
    default_mask_ms: int = 100
    neutral_placeholder: str = "?"

    def __post_init__(self) -> None:
        if self.transition_pause_ms < 0:
            raise ValueError("transition_pause_ms must be >= 0")
        if self.speech_ceiling_ms <= 0:
            raise ValueError("speech_ceiling_ms must be > 0")
        if self.default_flash_ms < 0 or self.default_mask_ms < 0:
            raise ValueError("default flash/mask durations must be >= 0")


class SessionNotFinishedError(RuntimeError):
    pass


class ScreeningOrchestrator:
    def __init__(
        self,
        *,
        catalog: Sequence[TaskDefinition],
        adapter: PresentationAdapter,
        clock: Clock,
        speech: SpeechCapability | None = None,
        seed: int | None = None,
        config: OrchestratorConfig | None = None,
        aggregator: MetricsAggregator | None = None,
    ) -> None:
        self._catalog = tuple(catalog)
        self._adapter = adapter
        self._clock = clock
        self._speech: SpeechCapability = speech or SilentSpeech()
        self._rng = random.Random(seed)
        self._config = config or OrchestratorConfig()
        self._aggregator = aggregator or MetricsAggregator(clock=clock)

        self._deadline = CountdownTimer(clock)
        self._pause = CountdownTimer(clock)
        self._reset_run_state()

    def _reset_run_state(self) -> None:
        self._state = ScreeningState.IDLE
        self._task_index = 0
        self._trial_index = 0
        self._task: TaskDefinition | None = None
        self._presenter: TrialPresenter | None = None
        self._window: ResponseWindow | None = None
        self._context: TrialContext | None = None
        self._input_locked = True

    # -- read-only views ---------------------------------------------------

    @property
    def state(self) -> ScreeningState:
        return self._state

    @property
    def input_locked(self) -> bool:
        return self._input_locked

    @property
    def aggregator(self) -> MetricsAggregator:
        return self._aggregator

    @property
    def current_task(self) -> TaskDefinition | None:
        return self._task

    @property
    def task_index(self) -> int:
        return self._task_index

    @property
    def trial_index(self) -> int:
        return self._trial_index

    @property
    def current_options(self) -> tuple[str, ...]:
        if self._window is None or self._input_locked:
            return ()
        return self._window.options

    def time_remaining_s(self) -> float | None:
        if self._state is not ScreeningState.AWAITING_RESPONSE:
            return None
        return self._deadline.remaining_s()

    def session_snapshot(self) -> SessionData:
        return self._aggregator.session_snapshot()

    # -- adapter -> orchestrator ---------------------------------------------

    def begin_session(self) -> None:
        if self._state is not ScreeningState.IDLE:
            log.debug("begin_session ignored in state %s", self._state.value)
            return
        log.info("Session %s started", self._aggregator.session_id)
        self._task_index = 0
        self._show_instructions()

    def acknowledge_instructions(self) -> None:
        if self._state is not ScreeningState.INSTRUCTIONS:
            log.debug("acknowledge_instructions ignored in state %s", self._state.value)
            return
        task = self._task
        assert task is not None
        self._state = ScreeningState.RUNNING
        self._trial_index = 0
        if not task.excluded:
            self._aggregator.open_task(
                task.id,
                task.type.value,
                task.trial_config,
                index=self._task_index,
                variant=task.variant,
            )
        self._presenter = presenter_for(
            task.presentation,
            adapter=self._adapter,
            speech=self._speech,
            clock=self._clock,
            rng=self._rng,
            config=self._config,
        )
        self._start_trial()

    def submit_selection(self, value: str) -> bool:
        """Deliver a subject's choice. Returns True if it finalized the trial."""

        # The deadline may have passed since the last tick; it wins.
        if self._state is ScreeningState.AWAITING_RESPONSE and self._deadline.fired():
            self._finalize(None, timed_out=True)
            return False

        if self._input_locked or self._state is not ScreeningState.AWAITING_RESPONSE:
            presenter = self._presenter
            if (
                self._state is ScreeningState.PRESENTING_STIMULUS
                and presenter is not None
                and presenter.kind is PresentationKind.MASKING
            ):
                log.warning("selection %r during flash/mask phase discarded", value)
            else:
                log.debug("selection %r discarded (input locked, state %s)", value, self._state.value)
            return False

        window = self._window
        assert window is not None
        selected: str | None = normalize_binary(value) if window.binary else value
        if selected is None or selected not in window.options:
            log.debug("selection %r is not a presented option", value)
            return False

        self._finalize(selected, timed_out=False)
        return True

    def update(self) -> None:
        try:
            self._speech.update()
        except Exception:
            log.warning("speech update failed", exc_info=True)

        if self._state is ScreeningState.PRESENTING_STIMULUS:
            self._advance_presentation()
        elif self._state is ScreeningState.AWAITING_RESPONSE:
            if self._deadline.fired():
                self._finalize(None, timed_out=True)
        elif self._state is ScreeningState.TRANSITIONING:
            if self._pause.fired():
                self._trial_index += 1
                self._start_trial()

    def restart(self) -> None:
        """Discard the current session and return to IDLE with a fresh one."""

        self._cancel_timers()
        self._speech.cancel()
        self._aggregator = MetricsAggregator(clock=self._clock)
        self._reset_run_state()
        log.info("Session restarted as %s", self._aggregator.session_id)

    # -- export ----------------------------------------------------------------

    def export_json(self) -> str:
        return export_json(self._finished_snapshot())

    def export_csv(self) -> str:
        return export_csv(self._finished_snapshot())

    def _finished_snapshot(self) -> SessionData:
        if self._state is not ScreeningState.FINISHED:
            raise SessionNotFinishedError("export is only available once the session has finished")
        return self._aggregator.session_snapshot()

    # -- transitions -------------------------------------------------------------

    def _show_instructions(self) -> None:
        if self._task_index >= len(self._catalog):
            self._finish()
            return
        task = self._catalog[self._task_index]
        self._task = task
        self._presenter = None
        self._state = ScreeningState.INSTRUCTIONS
        self._safe_render(self._adapter.render_instructions, task.title, task.instruction)

    def _start_trial(self) -> None:
        task = self._task
        presenter = self._presenter
        assert task is not None and presenter is not None

        if self._deadline.armed:
            log.debug("cancelling stale response deadline")
        self._cancel_timers()
        presenter.cancel()
        self._window = None
        self._context = None

        if self._trial_index >= len(task.trials):
            self._complete_task()
            return

        trial = task.trials[self._trial_index]
        self._input_locked = True
        self._state = ScreeningState.PRESENTING_STIMULUS
        try:
            self._adapter.clear_presentation()
            self._adapter.render_progress(self._trial_index + 1, len(task.trials))
            presenter.begin(trial, task.trial_config)
        except Exception:
            log.warning("presenting trial %d of %s failed", self._trial_index, task.id, exc_info=True)
            self._force_timeout(trial)
            return
        self._advance_presentation()

    def _advance_presentation(self) -> None:
        task = self._task
        presenter = self._presenter
        assert task is not None and presenter is not None
        try:
            window = presenter.advance()
        except Exception:
            log.warning("presenting trial %d of %s failed", self._trial_index, task.id, exc_info=True)
            self._force_timeout(task.trials[self._trial_index])
            return
        if window is not None:
            self._open_window(window)

    def _open_window(self, window: ResponseWindow) -> None:
        task = self._task
        assert task is not None
        self._window = window
        if not task.excluded:
            self._context = self._aggregator.start_trial(
                window.target,
                window.options,
                self._trial_index,
                binary=window.binary,
                stimulus=window.stimulus,
                is_real_word=window.is_real_word,
            )
        self._deadline.start(task.trial_config.timeout_ms)
        self._state = ScreeningState.AWAITING_RESPONSE
        self._input_locked = False

    def _force_timeout(self, trial: TrialSpec) -> None:
        task = self._task
        assert task is not None
        presenter = self._presenter
        if presenter is not None:
            presenter.cancel()
        self._input_locked = True
        if not task.excluded and self._context is None:
            self._context = self._aggregator.start_trial(
                trial.expected,
                (),
                self._trial_index,
                binary=trial.is_binary,
                stimulus=trial.stimulus,
                is_real_word=trial.is_real,
            )
        self._finalize(None, timed_out=True)

    def _finalize(self, selected: str | None, *, timed_out: bool) -> None:
        # Lock first: whichever of response/deadline arrives first wins.
        self._input_locked = True
        self._deadline.cancel()
        task = self._task
        assert task is not None
        if not task.excluded and self._context is not None:
            self._aggregator.record_response(self._context, selected, timed_out)
        self._context = None
        self._state = ScreeningState.TRANSITIONING
        self._safe_render(self._adapter.clear_presentation)
        self._pause.start(self._config.transition_pause_ms)

    def _complete_task(self) -> None:
        task = self._task
        assert task is not None
        self._state = ScreeningState.TASK_COMPLETE
        self._cancel_timers()
        if not task.excluded:
            self._aggregator.close_task()
        self._task_index += 1
        self._show_instructions()

    def _finish(self) -> None:
        self._cancel_timers()
        self._speech.cancel()
        self._task = None
        self._presenter = None
        self._window = None
        self._input_locked = True
        self._state = ScreeningState.FINISHED
        self._aggregator.close_session()
        log.info("Session %s finished", self._aggregator.session_id)
        self._safe_render(self._adapter.on_session_finished)

    def _cancel_timers(self) -> None:
        self._deadline.cancel()
        self._pause.cancel()

    def _safe_render(self, fn, *args) -> None:
        try:
            fn(*args)
        except Exception:
            log.warning("presentation adapter call %s failed", getattr(fn, "__name__", fn), exc_info=True)


def build_screening_session(
    *,
    clock: Clock,
    adapter: PresentationAdapter,
    speech: SpeechCapability | None = None,
    catalog: Sequence[TaskDefinition] | None = None,
    seed: int | None = None,
    config: OrchestratorConfig | None = None,
) -> ScreeningOrchestrator:
    return ScreeningOrchestrator(
        catalog=DEFAULT_CATALOG if catalog is None else catalog,
        adapter=adapter,
        clock=clock,
        speech=speech,
        seed=seed,
        config=config,
    )
