"""Trial recording and summary statistics for a screening session.

MetricsAggregator owns the single in-memory SessionData. The orchestrator is
its only writer: it opens a task, starts and finalizes trials, and closes the
task. Out-of-sequence calls are logged and ignored so a misbehaving caller
cannot corrupt what has already been recorded.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from itertools import count

from . import stats
from .catalog import TrialConfig, normalize_binary
from .clock import Clock, to_ms

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TaskHandle:
    index: int
    task_id: str
    task_type: str


@dataclass(frozen=True, slots=True)
class TrialContext:
    """Opaque token returned by start_trial and handed back to record_response."""

    token: int
    task_token: int
    index: int
    target: str
    options: tuple[str, ...]
    presented_at_ms: int
    binary: bool = False
    stimulus: str | None = None
    is_real_word: bool | None = None


@dataclass(frozen=True, slots=True)
class TrialRecord:
    index: int
    target: str
    options: tuple[str, ...]
    selected: str | None  # None means timeout
    is_correct: bool
    rt_ms: int | None  # None iff timed_out
    presented_at_ms: int
    responded_at_ms: int
    timed_out: bool
    stimulus: str | None = None
    is_real_word: bool | None = None


@dataclass(frozen=True, slots=True)
class TaskSummary:
    total_trials: int
    completed_trials: int
    correct_count: int
    accuracy: float
    timeouts: int
    mean_rt_ms: float | None
    median_rt_ms: float | None
    rt_std_dev_ms: float | None
    duration_s: float


@dataclass(frozen=True, slots=True)
class TaskResult:
    index: int
    task_id: str
    task_type: str
    variant: str
    started_at_ms: int
    ended_at_ms: int
    trials: tuple[TrialRecord, ...]
    summary: TaskSummary


@dataclass(frozen=True, slots=True)
class AttentionStability:
    sample_count: int
    mean_rt_ms: float | None
    rt_std_dev_ms: float | None
    coefficient_of_variation: float | None


@dataclass(frozen=True, slots=True)
class SessionData:
    session_id: str
    started_at: str
    ended_at: str | None
    finished: bool
    tasks: tuple[TaskResult, ...]
    confusions: dict[str, int]
    attention: AttentionStability

    def repeated_confusions(self, min_count: int = 2) -> list[tuple[str, int]]:
        return _repeated(self.confusions, min_count)


def confusion_key(target: str, selected: str) -> str:
    return f"{target}->{selected}"


def _repeated(counts: dict[str, int], min_count: int) -> list[tuple[str, int]]:
    # sorted() is stable, so ties keep first-seen order.
    hits = [(k, c) for k, c in counts.items() if c >= min_count]
    return sorted(hits, key=lambda kv: -kv[1])


class ConfusionMatrix:
    """Counts of (target, incorrectly selected) pairs in first-seen order."""

    def __init__(self) -> None:
        self._counts: dict[str, int] = {}

    def record(self, target: str, selected: str) -> None:
        key = confusion_key(target, selected)
        self._counts[key] = self._counts.get(key, 0) + 1

    def counts(self) -> dict[str, int]:
        return dict(self._counts)

    def repeated(self, min_count: int = 2) -> list[tuple[str, int]]:
        return _repeated(self._counts, min_count)


def summarize(records: list[TrialRecord] | tuple[TrialRecord, ...], *, duration_s: float) -> TaskSummary:
    completed = [r for r in records if not r.timed_out]
    rts = [r.rt_ms for r in completed if r.rt_ms is not None]
    correct = sum(1 for r in completed if r.is_correct)
    return TaskSummary(
        total_trials=len(records),
        completed_trials=len(completed),
        correct_count=correct,
        accuracy=stats.accuracy_percent(correct, len(completed)),
        timeouts=len(records) - len(completed),
        mean_rt_ms=stats.mean(rts),
        median_rt_ms=stats.median(rts),
        rt_std_dev_ms=stats.population_std_dev(rts),
        duration_s=float(duration_s),
    )


def _utc_iso(epoch_s: float) -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(epoch_s))


@dataclass(slots=True)
class _OpenTask:
    token: int
    handle: TaskHandle
    config: TrialConfig | None
    variant: str
    started_at_ms: int
    records: list[TrialRecord] = field(default_factory=list)
    finalized: set[int] = field(default_factory=set)


class MetricsAggregator:
    def __init__(
        self,
        *,
        clock: Clock,
        session_id: str | None = None,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._clock = clock
        self._wall_clock = wall_clock
        self._session_id = session_id or uuid.uuid4().hex
        self._started_at = _utc_iso(wall_clock())
        self._ended_at: str | None = None
        self._finished = False

        self._tasks: list[TaskResult] = []
        self._open: _OpenTask | None = None
        self._confusions = ConfusionMatrix()
        self._tokens = count(1)

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def has_open_task(self) -> bool:
        return self._open is not None

    @property
    def finished(self) -> bool:
        return self._finished

    def open_task(
        self,
        task_id: str,
        task_type: str,
        config: TrialConfig | None = None,
        *,
        index: int | None = None,
        variant: str = "standard",
    ) -> TaskHandle | None:
        if self._finished:
            log.warning("open_task(%s) after session close ignored", task_id)
            return None
        if self._open is not None:
            log.warning(
                "open_task(%s) while %s is still open ignored",
                task_id,
                self._open.handle.task_id,
            )
            return None

        handle = TaskHandle(
            index=len(self._tasks) if index is None else int(index),
            task_id=str(task_id),
            task_type=str(task_type),
        )
        self._open = _OpenTask(
            token=next(self._tokens),
            handle=handle,
            config=config,
            variant=variant,
            started_at_ms=to_ms(self._clock.now()),
        )
        log.info("Task %s (%s) opened", handle.task_id, handle.task_type)
        return handle

    def start_trial(
        self,
        target: str,
        options: tuple[str, ...] | list[str],
        index: int,
        *,
        binary: bool = False,
        stimulus: str | None = None,
        is_real_word: bool | None = None,
    ) -> TrialContext | None:
        if self._open is None:
            log.warning("start_trial(%d) with no open task ignored", index)
            return None
        return TrialContext(
            token=next(self._tokens),
            task_token=self._open.token,
            index=int(index),
            target=str(target),
            options=tuple(options),
            presented_at_ms=to_ms(self._clock.now()),
            binary=binary,
            stimulus=stimulus,
            is_real_word=is_real_word,
        )

    def record_response(
        self,
        context: TrialContext,
        selected: str | None,
        was_timeout: bool,
    ) -> TrialRecord | None:
        task = self._open
        if task is None:
            log.warning("record_response for trial %d with no open task ignored", context.index)
            return None
        if context.task_token != task.token:
            log.warning("record_response for trial %d from a closed task ignored", context.index)
            return None
        if context.token in task.finalized:
            log.warning("trial %d already finalized; duplicate response ignored", context.index)
            return None

        responded_at_ms = to_ms(self._clock.now())
        if was_timeout or selected is None:
            was_timeout = True
            selected = None
            rt_ms = None
            is_correct = False
        else:
            rt_ms = max(0, responded_at_ms - context.presented_at_ms)
            if context.binary:
                is_correct = normalize_binary(selected) == context.target
            else:
                is_correct = selected == context.target

        record = TrialRecord(
            index=context.index,
            target=context.target,
            options=context.options,
            selected=selected,
            is_correct=is_correct,
            rt_ms=rt_ms,
            presented_at_ms=context.presented_at_ms,
            responded_at_ms=responded_at_ms,
            timed_out=was_timeout,
            stimulus=context.stimulus,
            is_real_word=context.is_real_word,
        )
        task.finalized.add(context.token)
        task.records.append(record)

        if not was_timeout and not is_correct and selected is not None:
            if context.binary:
                selected = normalize_binary(selected) or selected
            self._confusions.record(context.target, selected)
        return record

    def close_task(self) -> TaskResult | None:
        task = self._open
        if task is None:
            log.warning("close_task with no open task ignored")
            return None

        ended_at_ms = to_ms(self._clock.now())
        records = tuple(task.records)
        result = TaskResult(
            index=task.handle.index,
            task_id=task.handle.task_id,
            task_type=task.handle.task_type,
            variant=task.variant,
            started_at_ms=task.started_at_ms,
            ended_at_ms=ended_at_ms,
            trials=records,
            summary=summarize(records, duration_s=(ended_at_ms - task.started_at_ms) / 1000.0),
        )
        self._tasks.append(result)
        self._open = None
        s = result.summary
        log.info(
            "Task %s closed: %d trials, %d correct, %d timeouts",
            result.task_id,
            s.total_trials,
            s.correct_count,
            s.timeouts,
        )
        return result

    def close_session(self) -> None:
        if self._finished:
            return
        if self._open is not None:
            log.warning("session closed with task %s still open", self._open.handle.task_id)
            self.close_task()
        self._ended_at = _utc_iso(self._wall_clock())
        self._finished = True
        log.info("Session %s closed with %d scored tasks", self._session_id, len(self._tasks))

    def attention_stability(self) -> AttentionStability:
        records: list[TrialRecord] = [r for t in self._tasks for r in t.trials]
        if self._open is not None:
            records.extend(self._open.records)
        rts = [r.rt_ms for r in records if not r.timed_out and r.rt_ms is not None]
        return AttentionStability(
            sample_count=len(rts),
            mean_rt_ms=stats.mean(rts),
            rt_std_dev_ms=stats.population_std_dev(rts),
            coefficient_of_variation=stats.coefficient_of_variation(rts),
        )

    def repeated_confusions(self, min_count: int = 2) -> list[tuple[str, int]]:
        return self._confusions.repeated(min_count)

    def session_snapshot(self) -> SessionData:
        return SessionData(
            session_id=self._session_id,
            started_at=self._started_at,
            ended_at=self._ended_at,
            finished=self._finished,
            tasks=tuple(self._tasks),
            confusions=self._confusions.counts(),
            attention=self.attention_stability(),
        )
