"""Task/level content tables for the screening run.

The catalog is pure data: an ordered tuple of TaskDefinition values. The
built-in DEFAULT_CATALOG mirrors the shipped screening battery; alternative
batteries can be loaded from JSON with load_catalog().
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

log = logging.getLogger(__name__)

YES = "YES"
NO = "NO"


class CatalogError(ValueError):
    """Raised when catalog content is malformed."""


class TaskType(StrEnum):
    BASELINE_LITERACY = "baseline_literacy"
    PHONEME_GRAPHEME = "phoneme_grapheme"
    VISUAL_DISCRIMINATION = "visual_discrimination"
    VISUAL_MASKING = "visual_masking"
    LEXICAL_DECISION = "lexical_decision"
    ATTENTION_STABILITY = "attention_stability"


class PresentationKind(StrEnum):
    STANDARD = "standard"
    AUDIO = "audio"
    MASKING = "masking"
    BINARY = "binary"


_PRESENTATION_BY_TYPE: dict[TaskType, PresentationKind] = {
    TaskType.PHONEME_GRAPHEME: PresentationKind.AUDIO,
    TaskType.VISUAL_MASKING: PresentationKind.MASKING,
    TaskType.LEXICAL_DECISION: PresentationKind.BINARY,
}


@dataclass(frozen=True, slots=True)
class TrialConfig:
    timeout_ms: int
    flash_ms: int | None = None
    mask_ms: int | None = None
    play_audio: bool = False
    binary_choice: bool = False
    show_stimulus: bool = False

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be > 0")
        if self.flash_ms is not None and self.flash_ms < 0:
            raise ValueError("flash_ms must be >= 0")
        if self.mask_ms is not None and self.mask_ms < 0:
            raise ValueError("mask_ms must be >= 0")


@dataclass(frozen=True, slots=True)
class TrialSpec:
    target: str | None = None
    distractors: tuple[str, ...] = ()
    phoneme: str | None = None  # spoken form for audio-driven trials
    stimulus: str | None = None  # binary tasks only
    is_real: bool | None = None  # binary tasks only

    @property
    def is_binary(self) -> bool:
        return self.is_real is not None

    @property
    def expected(self) -> str:
        """Value a correct selection must equal."""
        if self.is_real is not None:
            return YES if self.is_real else NO
        return self.target or ""

    @property
    def spoken_text(self) -> str:
        return self.phoneme or self.target or ""


@dataclass(frozen=True, slots=True)
class TaskDefinition:
    id: str
    type: TaskType
    title: str
    instruction: str
    trial_config: TrialConfig
    trials: tuple[TrialSpec, ...]
    excluded: bool = False  # warmup/practice: never scored
    variant: str = "standard"

    @property
    def presentation(self) -> PresentationKind:
        if self.trial_config.binary_choice:
            return PresentationKind.BINARY
        if self.trial_config.play_audio:
            return PresentationKind.AUDIO
        return _PRESENTATION_BY_TYPE.get(self.type, PresentationKind.STANDARD)


def _spec(target: str, *distractors: str, phoneme: str | None = None) -> TrialSpec:
    return TrialSpec(target=target, distractors=tuple(distractors), phoneme=phoneme)


def _word(stimulus: str, is_real: bool) -> TrialSpec:
    return TrialSpec(stimulus=stimulus, is_real=is_real)


DEFAULT_CATALOG: tuple[TaskDefinition, ...] = (
    TaskDefinition(
        id="warmup",
        type=TaskType.VISUAL_DISCRIMINATION,
        title="Practice Round",
        instruction="Click the matching letter. This is just practice.",
        trial_config=TrialConfig(timeout_ms=5000, show_stimulus=True),
        trials=(_spec("A", "X", "Z"), _spec("B", "R", "K")),
        excluded=True,
    ),
    # Catches instructional gaps rather than decoding problems.
    TaskDefinition(
        id="baseline_literacy",
        type=TaskType.BASELINE_LITERACY,
        title="Word Recognition",
        instruction="Find the matching word.",
        trial_config=TrialConfig(timeout_ms=4000, show_stimulus=True),
        trials=(
            _spec("the", "teh", "hte"),
            _spec("and", "nad", "dna"),
            _spec("is", "si", "iz"),
            _spec("cat", "cta", "tac"),
            _spec("dog", "god", "dgo"),
            _spec("run", "nur", "unr"),
        ),
    ),
    TaskDefinition(
        id="phoneme_grapheme",
        type=TaskType.PHONEME_GRAPHEME,
        title="Sound Matching",
        instruction="Listen to the sound. Click the letter that makes that sound.",
        trial_config=TrialConfig(timeout_ms=3000, play_audio=True),
        trials=(
            _spec("b", "d", "p", phoneme="buh"),
            _spec("d", "b", "t", phoneme="duh"),
            _spec("m", "n", "w", phoneme="mmm"),
            _spec("n", "m", "h", phoneme="nnn"),
            _spec("s", "z", "c", phoneme="sss"),
            _spec("f", "v", "th", phoneme="fff"),
            _spec("p", "b", "q", phoneme="puh"),
            _spec("t", "d", "k", phoneme="tuh"),
            _spec("k", "g", "c", phoneme="kuh"),
            _spec("g", "k", "j", phoneme="guh"),
        ),
    ),
    # Mirror/rotation confusions; b and d repeat for pattern detection.
    TaskDefinition(
        id="visual_confusable",
        type=TaskType.VISUAL_DISCRIMINATION,
        title="Letter Match",
        instruction="Look carefully. Click the exact matching letter.",
        trial_config=TrialConfig(timeout_ms=3000, show_stimulus=True),
        trials=(
            _spec("b", "d", "p", "q"),
            _spec("d", "b", "q", "p"),
            _spec("p", "q", "b", "d"),
            _spec("q", "p", "d", "b"),
            _spec("b", "d", "p", "q"),
            _spec("d", "b", "q", "p"),
            _spec("n", "u", "h", "m"),
            _spec("u", "n", "v", "c"),
            _spec("m", "w", "nn", "rn"),
            _spec("w", "m", "vv", "uu"),
        ),
    ),
    TaskDefinition(
        id="visual_masking",
        type=TaskType.VISUAL_MASKING,
        title="Quick Look",
        instruction="A letter will flash briefly. Click what you saw.",
        trial_config=TrialConfig(timeout_ms=3000, flash_ms=400, mask_ms=100),
        trials=(
            _spec("b", "d", "p"),
            _spec("d", "b", "q"),
            _spec("p", "q", "b"),
            _spec("q", "p", "d"),
            _spec("n", "u", "m"),
            _spec("u", "n", "v"),
            _spec("was", "saw"),
            _spec("on", "no"),
        ),
    ),
    TaskDefinition(
        id="lexical_decision",
        type=TaskType.LEXICAL_DECISION,
        title="Real or Not?",
        instruction="Is this a real word? Click YES or NO.",
        trial_config=TrialConfig(timeout_ms=3000, binary_choice=True),
        trials=(
            _word("cat", True),
            _word("plim", False),
            _word("dog", True),
            _word("frote", False),
            _word("run", True),
            _word("nalp", False),
            _word("book", True),
            _word("brone", False),
            _word("tree", True),
            _word("glorp", False),
            _word("house", True),
            _word("snorf", False),
        ),
    ),
    # Same structure as the letter match; compared for RT variance.
    TaskDefinition(
        id="attention_check",
        type=TaskType.ATTENTION_STABILITY,
        title="One More Time",
        instruction="Same as before. Click the matching letter.",
        trial_config=TrialConfig(timeout_ms=3000, show_stimulus=True),
        trials=(
            _spec("b", "d", "p", "q"),
            _spec("d", "b", "q", "p"),
            _spec("p", "q", "b", "d"),
            _spec("q", "p", "d", "b"),
            _spec("n", "u", "h", "m"),
            _spec("u", "n", "v", "c"),
        ),
    ),
)


def _opt_int(raw: Mapping[str, object], key: str) -> int | None:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise CatalogError(f"{key} must be a number")
    return int(value)


def _trial_from_data(raw: object, *, binary: bool, where: str) -> TrialSpec:
    if not isinstance(raw, Mapping):
        raise CatalogError(f"{where}: trial must be an object")
    if binary:
        stimulus = raw.get("stimulus")
        is_real = raw.get("is_real")
        if not isinstance(stimulus, str) or stimulus == "":
            raise CatalogError(f"{where}: binary trial needs a stimulus")
        if not isinstance(is_real, bool):
            raise CatalogError(f"{where}: binary trial needs is_real true/false")
        return TrialSpec(stimulus=stimulus, is_real=is_real)

    target = raw.get("target")
    if not isinstance(target, str) or target == "":
        raise CatalogError(f"{where}: trial needs a target")
    distractors = raw.get("distractors", [])
    if not isinstance(distractors, Sequence) or isinstance(distractors, str):
        raise CatalogError(f"{where}: distractors must be a list")
    phoneme = raw.get("phoneme")
    if phoneme is not None and not isinstance(phoneme, str):
        raise CatalogError(f"{where}: phoneme must be a string")
    return TrialSpec(
        target=target,
        distractors=tuple(str(d) for d in distractors),
        phoneme=phoneme,
    )


def _task_from_data(raw: object, *, position: int) -> TaskDefinition:
    if not isinstance(raw, Mapping):
        raise CatalogError(f"task #{position} must be an object")
    task_id = raw.get("id")
    if not isinstance(task_id, str) or task_id == "":
        raise CatalogError(f"task #{position} is missing an id")
    try:
        task_type = TaskType(str(raw.get("type")))
    except ValueError as exc:
        raise CatalogError(f"{task_id}: unknown task type {raw.get('type')!r}") from exc

    cfg_raw = raw.get("trial_config", {})
    if not isinstance(cfg_raw, Mapping):
        raise CatalogError(f"{task_id}: trial_config must be an object")
    timeout_ms = _opt_int(cfg_raw, "timeout_ms")
    if timeout_ms is None:
        raise CatalogError(f"{task_id}: trial_config.timeout_ms is required")
    try:
        config = TrialConfig(
            timeout_ms=timeout_ms,
            flash_ms=_opt_int(cfg_raw, "flash_ms"),
            mask_ms=_opt_int(cfg_raw, "mask_ms"),
            play_audio=bool(cfg_raw.get("play_audio", False)),
            binary_choice=bool(cfg_raw.get("binary_choice", False)),
            show_stimulus=bool(cfg_raw.get("show_stimulus", False)),
        )
    except ValueError as exc:
        raise CatalogError(f"{task_id}: {exc}") from exc

    binary = config.binary_choice or task_type is TaskType.LEXICAL_DECISION
    trials_raw = raw.get("trials")
    if not isinstance(trials_raw, Sequence) or isinstance(trials_raw, str) or not trials_raw:
        raise CatalogError(f"{task_id}: trials must be a non-empty list")
    trials = tuple(
        _trial_from_data(t, binary=binary, where=f"{task_id}[{i}]") for i, t in enumerate(trials_raw)
    )

    return TaskDefinition(
        id=task_id,
        type=task_type,
        title=str(raw.get("title", task_id)),
        instruction=str(raw.get("instruction", "")),
        trial_config=config,
        trials=trials,
        excluded=bool(raw.get("excluded", False)),
        variant=str(raw.get("variant", "standard")),
    )


def catalog_from_data(data: object) -> tuple[TaskDefinition, ...]:
    """Build a catalog from decoded JSON (a list of task objects, or {"tasks": [...]})."""

    if isinstance(data, Mapping):
        data = data.get("tasks")
    if not isinstance(data, Sequence) or isinstance(data, str):
        raise CatalogError("catalog must be a list of tasks")

    tasks = tuple(_task_from_data(raw, position=i) for i, raw in enumerate(data))
    seen: set[str] = set()
    for task in tasks:
        if task.id in seen:
            raise CatalogError(f"duplicate task id {task.id!r}")
        seen.add(task.id)
    return tasks


def load_catalog(path: Path) -> tuple[TaskDefinition, ...]:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise CatalogError(f"{path}: invalid JSON ({exc})") from exc
    tasks = catalog_from_data(data)
    log.info("Loaded catalog %s with %d tasks", path, len(tasks))
    return tasks


_YES_WORDS = frozenset({"YES", "Y", "REAL", "TRUE"})
_NO_WORDS = frozenset({"NO", "N", "NOT-REAL", "NOT REAL", "NOTREAL", "UNREAL", "FALSE"})


def normalize_binary(raw: str | None) -> str | None:
    """Map a free-form yes/no answer onto YES/NO, or None if it is neither."""

    if raw is None:
        return None
    token = " ".join(str(raw).strip().upper().split())
    if token in _YES_WORDS:
        return YES
    if token in _NO_WORDS:
        return NO
    return None
