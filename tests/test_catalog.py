from __future__ import annotations

import json

import pytest

from lexiscan.catalog import (
    DEFAULT_CATALOG,
    NO,
    YES,
    CatalogError,
    PresentationKind,
    TaskType,
    TrialConfig,
    TrialSpec,
    catalog_from_data,
    load_catalog,
    normalize_binary,
)


def test_default_catalog_ids_are_unique_and_warmup_is_excluded() -> None:
    ids = [t.id for t in DEFAULT_CATALOG]
    assert len(ids) == len(set(ids))
    assert DEFAULT_CATALOG[0].id == "warmup"
    assert DEFAULT_CATALOG[0].excluded is True
    assert all(not t.excluded for t in DEFAULT_CATALOG[1:])


def test_default_catalog_presentation_kinds() -> None:
    kinds = {t.id: t.presentation for t in DEFAULT_CATALOG}
    assert kinds["phoneme_grapheme"] is PresentationKind.AUDIO
    assert kinds["visual_masking"] is PresentationKind.MASKING
    assert kinds["lexical_decision"] is PresentationKind.BINARY
    assert kinds["visual_confusable"] is PresentationKind.STANDARD
    assert kinds["attention_check"] is PresentationKind.STANDARD


def test_default_catalog_trials_are_well_formed() -> None:
    for task in DEFAULT_CATALOG:
        assert task.trials, task.id
        for trial in task.trials:
            if task.presentation is PresentationKind.BINARY:
                assert trial.is_binary and trial.stimulus
            else:
                assert trial.target
                assert trial.target not in trial.distractors


def test_trial_expected_value() -> None:
    assert TrialSpec(target="b", distractors=("d",)).expected == "b"
    assert TrialSpec(stimulus="cat", is_real=True).expected == YES
    assert TrialSpec(stimulus="plim", is_real=False).expected == NO
    assert TrialSpec(target="b", phoneme="buh").spoken_text == "buh"
    assert TrialSpec(target="b").spoken_text == "b"


def test_trial_config_rejects_bad_durations() -> None:
    with pytest.raises(ValueError):
        TrialConfig(timeout_ms=0)
    with pytest.raises(ValueError):
        TrialConfig(timeout_ms=1000, flash_ms=-1)
    with pytest.raises(ValueError):
        TrialConfig(timeout_ms=1000, mask_ms=-5)


def test_load_catalog_from_json(tmp_path) -> None:
    path = tmp_path / "battery.json"
    path.write_text(
        json.dumps(
            {
                "tasks": [
                    {
                        "id": "quick",
                        "type": "visual_masking",
                        "title": "Quick",
                        "trial_config": {"timeout_ms": 2500, "flash_ms": 300},
                        "trials": [{"target": "b", "distractors": ["d", "p"]}],
                        "variant": "short",
                    },
                    {
                        "id": "words",
                        "type": "lexical_decision",
                        "trial_config": {"timeout_ms": 3000, "binary_choice": True},
                        "trials": [{"stimulus": "cat", "is_real": True}],
                    },
                ]
            }
        ),
        encoding="utf-8",
    )
    tasks = load_catalog(path)
    assert [t.id for t in tasks] == ["quick", "words"]
    quick, words = tasks
    assert quick.type is TaskType.VISUAL_MASKING
    assert quick.trial_config.flash_ms == 300
    assert quick.trial_config.mask_ms is None
    assert quick.variant == "short"
    assert quick.trials[0].distractors == ("d", "p")
    assert words.presentation is PresentationKind.BINARY
    assert words.trials[0].expected == YES
    assert words.title == "words"


@pytest.mark.parametrize(
    "data",
    [
        "not a list",
        [{"type": "visual_discrimination", "trial_config": {"timeout_ms": 1}, "trials": [{"target": "b"}]}],
        [{"id": "x", "type": "nope", "trial_config": {"timeout_ms": 1}, "trials": [{"target": "b"}]}],
        [{"id": "x", "type": "visual_discrimination", "trial_config": {}, "trials": [{"target": "b"}]}],
        [{"id": "x", "type": "visual_discrimination", "trial_config": {"timeout_ms": 0}, "trials": [{"target": "b"}]}],
        [{"id": "x", "type": "visual_discrimination", "trial_config": {"timeout_ms": 1}, "trials": []}],
        [{"id": "x", "type": "lexical_decision", "trial_config": {"timeout_ms": 1}, "trials": [{"stimulus": "cat"}]}],
        [
            {"id": "x", "type": "visual_discrimination", "trial_config": {"timeout_ms": 1}, "trials": [{"target": "b"}]},
            {"id": "x", "type": "visual_discrimination", "trial_config": {"timeout_ms": 1}, "trials": [{"target": "d"}]},
        ],
    ],
)
def test_catalog_from_data_rejects_malformed_content(data) -> None:
    with pytest.raises(CatalogError):
        catalog_from_data(data)


def test_load_catalog_rejects_invalid_json(tmp_path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{ nope", encoding="utf-8")
    with pytest.raises(CatalogError):
        load_catalog(path)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("YES", YES),
        ("yes", YES),
        (" y ", YES),
        ("Real", YES),
        ("NO", NO),
        ("n", NO),
        ("not real", NO),
        ("Not-Real", NO),
        ("maybe", None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_binary(raw, expected) -> None:
    assert normalize_binary(raw) == expected
