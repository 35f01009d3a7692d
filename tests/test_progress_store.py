from __future__ import annotations

import errno
import json
from pathlib import Path

import pytest

from progress_store import (
    STORAGE_KEY,
    THEME_KEY,
    LocalStore,
    Progress,
    ProgressStore,
    QuotaExceededError,
    StorageError,
    ThemeStore,
)

DEFAULT = Progress(current_question=None, completed_questions=[], saved_queries={})


def _store_raw(local_store: LocalStore, payload: object) -> None:
    text = payload if isinstance(payload, str) else json.dumps(payload)
    local_store.set_item(STORAGE_KEY, text)


# ----------------------
# LocalStore
# ----------------------
def test_local_store_round_trips_items(tmp_path: Path) -> None:
    store = LocalStore(tmp_path / "nested" / "storage.json", quota_bytes=0)

    assert store.get_item("missing") is None
    store.set_item("a", "1")
    store.set_item("b", "2")
    store.remove_item("a")

    reopened = LocalStore(tmp_path / "nested" / "storage.json")
    assert reopened.get_item("a") is None
    assert reopened.get_item("b") == "2"

    reopened.clear()
    assert reopened.get_item("b") is None


def test_local_store_ignores_unreadable_file(tmp_path: Path) -> None:
    path = tmp_path / "storage.json"
    path.write_text("{not json", encoding="utf-8")

    store = LocalStore(path)
    assert store.get_item(STORAGE_KEY) is None
    store.set_item("k", "v")
    assert store.get_item("k") == "v"


@pytest.mark.parametrize(
    "raw",
    [
        pytest.param(b'{"sql_practice_progress": "\xff\xfe"}', id="invalid-utf8-value"),
        pytest.param(b"\xff\xfe garbage", id="invalid-utf8-file"),
        pytest.param(("[" * 200000 + "]" * 200000).encode(), id="deeply-nested"),
    ],
)
def test_corrupt_store_file_falls_back_to_defaults(tmp_path: Path, raw: bytes) -> None:
    path = tmp_path / "storage.json"
    path.write_bytes(raw)
    local_store = LocalStore(path, quota_bytes=0)

    assert local_store.get_item(STORAGE_KEY) is None
    assert ProgressStore(local_store).get_progress() == DEFAULT
    assert ThemeStore(local_store).get_theme() == "light"


def test_local_store_enforces_quota(tmp_path: Path) -> None:
    store = LocalStore(tmp_path / "storage.json", quota_bytes=64)

    store.set_item("small", "x")
    with pytest.raises(QuotaExceededError):
        store.set_item("big", "x" * 100)
    assert store.get_item("big") is None
    assert store.get_item("small") == "x"


def test_local_store_maps_full_disk_to_quota_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def full_disk(self, *args, **kwargs):
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr(Path, "write_text", full_disk)
    store = LocalStore(tmp_path / "storage.json", quota_bytes=0)

    with pytest.raises(QuotaExceededError):
        store.set_item("k", "v")


def test_local_store_wraps_read_failures(tmp_path: Path) -> None:
    store = LocalStore(tmp_path, quota_bytes=0)
    with pytest.raises(StorageError):
        store.get_item(STORAGE_KEY)


# ----------------------
# get_progress
# ----------------------
def test_get_progress_defaults_when_nothing_saved(progress_store: ProgressStore) -> None:
    assert progress_store.get_progress() == DEFAULT


def test_get_progress_returns_saved_record(progress_store: ProgressStore, local_store: LocalStore) -> None:
    _store_raw(
        local_store,
        {
            "version": 1,
            "current_question": "hospital-05",
            "completed_questions": ["hospital-01", "hospital-02"],
            "saved_queries": {"hospital-01": "SELECT * FROM departments"},
        },
    )

    assert progress_store.get_progress() == Progress(
        current_question="hospital-05",
        completed_questions=["hospital-01", "hospital-02"],
        saved_queries={"hospital-01": "SELECT * FROM departments"},
    )


def test_get_progress_accepts_unversioned_record_with_numeric_ids(
    progress_store: ProgressStore, local_store: LocalStore
) -> None:
    _store_raw(local_store, {"current_question": 5, "completed_questions": [1, 2, 3], "saved_queries": {}})

    progress = progress_store.get_progress()
    assert progress.current_question == "5"
    assert progress.completed_questions == ["1", "2", "3"]


def test_get_progress_drops_duplicate_completed_ids(progress_store: ProgressStore, local_store: LocalStore) -> None:
    _store_raw(local_store, {"completed_questions": ["a", "b", "a", "b"], "saved_queries": {}})
    assert progress_store.get_progress().completed_questions == ["a", "b"]


@pytest.mark.parametrize(
    "payload",
    [
        "corrupted data",
        pytest.param("[" * 200000 + "]" * 200000, id="deeply-nested"),
        "[1, 2, 3]",
        {"current_question": 5},
        {"completed_questions": "a,b", "saved_queries": {}},
        {"completed_questions": [], "saved_queries": []},
        {"completed_questions": [{"id": 1}], "saved_queries": {}},
        {"completed_questions": [], "saved_queries": {"1": 42}},
        {"version": 99, "completed_questions": [], "saved_queries": {}},
    ],
)
def test_get_progress_recovers_from_corrupt_record(
    progress_store: ProgressStore, local_store: LocalStore, payload: object
) -> None:
    _store_raw(local_store, payload)

    assert progress_store.get_progress() == DEFAULT
    assert local_store.get_item(STORAGE_KEY) is None


def test_get_progress_survives_storage_failure(tmp_path: Path) -> None:
    store = ProgressStore(LocalStore(tmp_path, quota_bytes=0))
    assert store.get_progress() == DEFAULT


# ----------------------
# save_progress
# ----------------------
def test_save_progress_writes_versioned_record(progress_store: ProgressStore, local_store: LocalStore) -> None:
    progress = Progress(current_question="company-01", completed_questions=["company-01"], saved_queries={})

    assert progress_store.save_progress(progress) is True
    assert json.loads(local_store.get_item(STORAGE_KEY)) == {
        "version": 1,
        "current_question": "company-01",
        "completed_questions": ["company-01"],
        "saved_queries": {},
    }


def test_save_progress_accepts_well_formed_dict(progress_store: ProgressStore) -> None:
    assert progress_store.save_progress({"completed_questions": ["x"], "saved_queries": {}}) is True
    assert progress_store.is_question_complete("x") is True


def test_save_progress_never_persists_duplicate_ids(progress_store: ProgressStore, local_store: LocalStore) -> None:
    progress = Progress(completed_questions=["1", "1", "2", "1"])

    assert progress_store.save_progress(progress) is True
    assert json.loads(local_store.get_item(STORAGE_KEY))["completed_questions"] == ["1", "2"]


@pytest.mark.parametrize("value", [None, "string", 123, ["a"], {"completed_questions": "a"}])
def test_save_progress_rejects_invalid_input(progress_store: ProgressStore, value: object) -> None:
    assert progress_store.save_progress(value) is False


def test_save_progress_drops_saved_queries_when_quota_is_exceeded(tmp_path: Path) -> None:
    local_store = LocalStore(tmp_path / "storage.json", quota_bytes=300)
    store = ProgressStore(local_store)
    progress = Progress(
        current_question="hospital-01",
        completed_questions=["hospital-01"],
        saved_queries={"hospital-01": "SELECT " + "x, " * 200 + "1"},
    )

    assert store.save_progress(progress) is False

    saved = store.get_progress()
    assert saved.completed_questions == ["hospital-01"]
    assert saved.current_question == "hospital-01"
    assert saved.saved_queries == {}


# ----------------------
# Per-question helpers
# ----------------------
def test_save_query_trims_text(progress_store: ProgressStore) -> None:
    assert progress_store.save_query(1, "  SELECT * FROM patients  ") is True
    assert progress_store.get_progress().saved_queries == {"1": "SELECT * FROM patients"}


def test_save_query_rejects_non_strings(progress_store: ProgressStore) -> None:
    assert progress_store.save_query(1, {"query": "test"}) is False
    assert progress_store.get_progress() == DEFAULT


def test_get_saved_query(progress_store: ProgressStore) -> None:
    assert progress_store.get_saved_query(999) == ""
    assert progress_store.get_saved_query(None) == ""

    progress_store.save_query(1, "SELECT 1")
    assert progress_store.get_saved_query(1) == "SELECT 1"
    assert progress_store.get_saved_query("1") == "SELECT 1"


def test_mark_question_complete_does_not_duplicate(progress_store: ProgressStore) -> None:
    assert progress_store.is_question_complete(1) is False

    assert progress_store.mark_question_complete(1) is True
    assert progress_store.mark_question_complete("1") is True

    assert progress_store.get_progress().completed_questions == ["1"]
    assert progress_store.is_question_complete(1) is True


def test_save_current_question(progress_store: ProgressStore) -> None:
    progress_store.save_current_question("university-03")
    assert progress_store.get_progress().current_question == "university-03"


def test_reset_progress(progress_store: ProgressStore, local_store: LocalStore) -> None:
    progress_store.mark_question_complete("a")
    local_store.set_item(THEME_KEY, "dark")

    assert progress_store.reset_progress() is True
    assert progress_store.get_progress() == DEFAULT
    assert local_store.get_item(THEME_KEY) == "dark"


# ----------------------
# Export / import
# ----------------------
def test_export_import_round_trip(tmp_path: Path, progress_store: ProgressStore) -> None:
    progress_store.mark_question_complete("hospital-01")
    progress_store.mark_question_complete("company-07")
    progress_store.save_query("hospital-02", "SELECT first_name FROM patients")
    progress_store.save_current_question("hospital-02")
    exported = progress_store.export_progress()

    other = ProgressStore(LocalStore(tmp_path / "other.json", quota_bytes=0))
    assert other.import_progress(exported) is True
    assert other.get_progress() == progress_store.get_progress()
    assert other.export_progress() == exported


def test_export_is_pretty_printed_json(progress_store: ProgressStore) -> None:
    exported = progress_store.export_progress()
    assert json.loads(exported)["version"] == 1
    assert "\n  " in exported


def test_import_accepts_bytes(progress_store: ProgressStore) -> None:
    payload = json.dumps({"completed_questions": ["q1"], "saved_queries": {}}).encode("utf-8")
    assert progress_store.import_progress(payload) is True
    assert progress_store.is_question_complete("q1") is True


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        "null",
        "[]",
        json.dumps({"completed_questions": []}),
        b"\xff\xfe",
        pytest.param("[" * 200000 + "]" * 200000, id="deeply-nested"),
    ],
)
def test_import_rejects_invalid_payload(progress_store: ProgressStore, payload: object) -> None:
    progress_store.mark_question_complete("kept")

    assert progress_store.import_progress(payload) is False
    assert progress_store.get_progress().completed_questions == ["kept"]


# ----------------------
# Theme preference
# ----------------------
def test_theme_defaults_to_light(theme_store: ThemeStore) -> None:
    assert theme_store.get_theme() == "light"


def test_theme_set_and_toggle(theme_store: ThemeStore) -> None:
    assert theme_store.set_theme("dark") is True
    assert theme_store.get_theme() == "dark"

    assert theme_store.toggle_theme() == "light"
    assert theme_store.get_theme() == "light"


def test_theme_ignores_invalid_stored_value(theme_store: ThemeStore, local_store: LocalStore) -> None:
    local_store.set_item(THEME_KEY, "purple")
    assert theme_store.get_theme() == "light"


def test_theme_rejects_unknown_value(theme_store: ThemeStore) -> None:
    with pytest.raises(ValueError):
        theme_store.set_theme("purple")


def test_theme_survives_storage_failure(tmp_path: Path) -> None:
    store = ThemeStore(LocalStore(tmp_path, quota_bytes=0))
    assert store.get_theme() == "light"
    assert store.set_theme("dark") is False
