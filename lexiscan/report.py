"""JSON and CSV renderings of a SessionData snapshot."""

from __future__ import annotations

import csv
import io
import json
import logging
from dataclasses import asdict

from .metrics import SessionData, TaskResult

log = logging.getLogger(__name__)

DISCLAIMER_LINES: tuple[str, ...] = (
    "This report is a screening aid and not a diagnostic instrument.",
    "No validated scoring thresholds are applied to any value above.",
    "Slow or inaccurate responses can reflect fatigue or unfamiliarity with the device.",
    "Low word recognition scores may reflect limited reading instruction rather than a reading difficulty.",
    "Repeated confusions (such as b->d) are listed only when they occurred two or more times.",
    "Attention stability is the variability of reaction time across all completed trials.",
    "A higher coefficient of variation means less consistent responding.",
    "Please discuss any concerns with a qualified educational psychologist or clinician.",
)


def _task_to_dict(task: TaskResult) -> dict[str, object]:
    return {
        "index": task.index,
        "task_id": task.task_id,
        "task_type": task.task_type,
        "variant": task.variant,
        "started_at_ms": task.started_at_ms,
        "ended_at_ms": task.ended_at_ms,
        "summary": asdict(task.summary),
        "trials": [asdict(r) for r in task.trials],
    }


def session_to_dict(session: SessionData) -> dict[str, object]:
    return {
        "session_id": session.session_id,
        "started_at": session.started_at,
        "ended_at": session.ended_at,
        "finished": session.finished,
        "tasks": [_task_to_dict(t) for t in session.tasks],
        "confusions": dict(session.confusions),
        "repeated_confusions": [
            {"pair": pair, "count": n} for pair, n in session.repeated_confusions()
        ],
        "attention_stability": asdict(session.attention),
    }


def export_json(session: SessionData) -> str:
    text = json.dumps(session_to_dict(session), indent=2, ensure_ascii=False)
    log.info("JSON export for session %s (%d tasks)", session.session_id, len(session.tasks))
    return text


def _fmt(value: float | None, digits: int = 1) -> str:
    return "N/A" if value is None else f"{value:.{digits}f}"


def export_csv(session: SessionData) -> str:
    out = io.StringIO()
    w = csv.writer(out)

    w.writerow(["Lexiscan Screening Report"])
    w.writerow(["Session ID", session.session_id])
    w.writerow(["Date", session.started_at])
    w.writerow([])

    w.writerow(["Task Summary"])
    w.writerow(
        [
            "Task",
            "Type",
            "Variant",
            "Trials",
            "Correct",
            "Accuracy(%)",
            "MeanRT(ms)",
            "MedianRT(ms)",
            "StdDevRT(ms)",
            "Timeouts",
            "Duration(s)",
        ]
    )
    for task in session.tasks:
        s = task.summary
        w.writerow(
            [
                task.index + 1,
                task.task_type,
                task.variant,
                s.total_trials,
                s.correct_count,
                f"{s.accuracy:.2f}",
                _fmt(s.mean_rt_ms),
                _fmt(s.median_rt_ms),
                _fmt(s.rt_std_dev_ms),
                s.timeouts,
                f"{s.duration_s:.2f}",
            ]
        )
    w.writerow([])

    w.writerow(["Repeated Confusions"])
    repeated = session.repeated_confusions()
    if repeated:
        w.writerow(["Pair", "Count"])
        for pair, n in repeated:
            w.writerow([pair, n])
    else:
        w.writerow(["None detected"])
    w.writerow([])

    w.writerow(["Attention Stability"])
    w.writerow(["Metric", "Value"])
    w.writerow(["RT Std Dev (ms)", _fmt(session.attention.rt_std_dev_ms, 2)])
    w.writerow(["Coefficient of Variation (%)", _fmt(session.attention.coefficient_of_variation, 2)])
    w.writerow([])

    w.writerow(["Detailed Trial Log"])
    w.writerow(["Task", "Trial", "Target", "Selected", "Correct", "RT(ms)", "Timeout"])
    for task in session.tasks:
        for r in task.trials:
            w.writerow(
                [
                    task.index + 1,
                    r.index + 1,
                    r.target,
                    "TIMEOUT" if r.selected is None else r.selected,
                    r.is_correct,
                    "N/A" if r.rt_ms is None else r.rt_ms,
                    r.timed_out,
                ]
            )
    w.writerow([])

    w.writerow(["Notes"])
    for line in DISCLAIMER_LINES:
        w.writerow([line])

    log.info("CSV export for session %s (%d tasks)", session.session_id, len(session.tasks))
    return out.getvalue()


def export_filename(session: SessionData, ext: str) -> str:
    return f"lexiscan_{session.session_id}.{ext.lstrip('.')}"
