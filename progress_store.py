"""Local persistence for learner progress and UI preferences.

Everything lives in one small JSON file that behaves like a browser's
``localStorage``: string keys mapping to string values. The progress record
is stored as a single versioned JSON blob under :data:`STORAGE_KEY` and is
rebuilt from defaults whenever it is missing or unreadable.
"""
from __future__ import annotations

import errno
import json
import logging
import os
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from config import settings


logger = logging.getLogger(__name__)


STORAGE_KEY = "sql_practice_progress"
THEME_KEY = "sql_practice_theme"
STORAGE_VERSION = 1

THEMES = ("light", "dark")
DEFAULT_THEME = "light"


class StorageError(Exception):
    """Raised when the local store cannot be read or written."""


class QuotaExceededError(StorageError):
    pass


# ==========================
# Key-value store
# ==========================
class LocalStore:
    def __init__(self, path: Optional[Path] = None, quota_bytes: Optional[int] = None) -> None:
        self.path = Path(path or settings.storage_path)
        self.quota_bytes = settings.storage_quota_bytes if quota_bytes is None else quota_bytes
        self._lock = threading.RLock()

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read_all().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = str(value)
            self._write_all(data)

    def remove_item(self, key: str) -> None:
        with self._lock:
            data = self._read_all()
            if key in data:
                del data[key]
                self._write_all(data)

    def clear(self) -> None:
        with self._lock:
            self._write_all({})

    def _read_all(self) -> Dict[str, str]:
        try:
            raw_text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except UnicodeDecodeError as exc:
            logger.warning("Ignoring store file %s that is not UTF-8: %s", self.path, exc)
            return {}
        except OSError as exc:
            raise StorageError(f"Failed to read {self.path}: {exc}") from exc

        try:
            payload = json.loads(raw_text)
        except (json.JSONDecodeError, RecursionError) as exc:
            logger.warning("Ignoring unreadable store file %s: %s", self.path, exc)
            return {}

        if not isinstance(payload, dict):
            logger.warning("Ignoring store file %s with unexpected layout", self.path)
            return {}
        return {k: v for k, v in payload.items() if isinstance(k, str) and isinstance(v, str)}

    def _write_all(self, data: Dict[str, str]) -> None:
        payload = json.dumps(data, ensure_ascii=False)
        size = len(payload.encode("utf-8"))
        if self.quota_bytes and size > self.quota_bytes:
            raise QuotaExceededError(
                f"Store would grow to {size} bytes, over the {self.quota_bytes} byte quota"
            )

        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            if exc.errno in (errno.ENOSPC, errno.EDQUOT):
                raise QuotaExceededError(str(exc)) from exc
            raise StorageError(f"Failed to write {self.path}: {exc}") from exc


# ==========================
# Progress record
# ==========================
@dataclass
class Progress:
    current_question: Optional[str] = None
    completed_questions: List[str] = field(default_factory=list)
    saved_queries: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": STORAGE_VERSION,
            "current_question": self.current_question,
            "completed_questions": _unique_ids(self.completed_questions),
            "saved_queries": dict(self.saved_queries),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Progress":
        """Build a record from its JSON form, raising ``ValueError`` on a bad shape."""

        if not isinstance(data, dict):
            raise ValueError("progress must be a JSON object")

        version = data.get("version", STORAGE_VERSION)
        if not isinstance(version, int) or isinstance(version, bool) or not 1 <= version <= STORAGE_VERSION:
            raise ValueError(f"unsupported progress version: {version!r}")

        completed = data.get("completed_questions")
        if not isinstance(completed, list) or not all(_is_id(item) for item in completed):
            raise ValueError("completed_questions must be a list of ids")

        saved = data.get("saved_queries")
        if not isinstance(saved, dict) or not all(isinstance(v, str) for v in saved.values()):
            raise ValueError("saved_queries must map ids to query text")

        current = data.get("current_question")
        if current is not None and not _is_id(current):
            raise ValueError("current_question must be an id")

        return cls(
            current_question=None if current is None else str(current),
            completed_questions=_unique_ids(completed),
            saved_queries={str(k): v for k, v in saved.items()},
        )


def _is_id(value: Any) -> bool:
    return isinstance(value, (str, int)) and not isinstance(value, bool)


def _unique_ids(ids: List[Any]) -> List[str]:
    unique: List[str] = []
    for item in ids:
        if str(item) not in unique:
            unique.append(str(item))
    return unique


class ProgressStore:
    def __init__(self, store: LocalStore) -> None:
        self.store = store

    def get_progress(self) -> Progress:
        try:
            saved = self.store.get_item(STORAGE_KEY)
        except StorageError as exc:
            logger.warning("Failed to load progress: %s", exc)
            return Progress()

        if saved is None:
            return Progress()

        try:
            return Progress.from_dict(json.loads(saved))
        except (ValueError, RecursionError) as exc:
            logger.warning("Discarding corrupted progress record: %s", exc)
            self._clear_corrupted()
        return Progress()

    def _clear_corrupted(self) -> None:
        try:
            self.store.remove_item(STORAGE_KEY)
        except StorageError as exc:
            logger.error("Failed to clear corrupted progress: %s", exc)

    def save_progress(self, progress: Union[Progress, Dict[str, Any]]) -> bool:
        if isinstance(progress, dict):
            try:
                progress = Progress.from_dict(progress)
            except ValueError as exc:
                logger.error("Invalid progress object: %s", exc)
                return False
        elif not isinstance(progress, Progress):
            logger.error("Invalid progress object: %r", type(progress).__name__)
            return False

        try:
            self.store.set_item(STORAGE_KEY, json.dumps(progress.to_dict()))
            return True
        except QuotaExceededError as exc:
            logger.warning("Storage quota exceeded while saving progress: %s", exc)
        except StorageError as exc:
            logger.warning("Failed to save progress: %s", exc)
            return False

        # Saved query text is the only part that grows without bound.
        trimmed = replace(progress, saved_queries={})
        try:
            self.store.set_item(STORAGE_KEY, json.dumps(trimmed.to_dict()))
            logger.warning("Cleared saved queries to free space")
        except StorageError as exc:
            logger.error("Failed to save progress after clearing queries: %s", exc)
        return False

    def mark_question_complete(self, question_id: Union[str, int]) -> bool:
        progress = self.get_progress()
        id_str = str(question_id)
        if id_str in progress.completed_questions:
            return True
        progress.completed_questions.append(id_str)
        return self.save_progress(progress)

    def is_question_complete(self, question_id: Union[str, int]) -> bool:
        return str(question_id) in self.get_progress().completed_questions

    def save_current_question(self, question_id: Optional[Union[str, int]]) -> bool:
        progress = self.get_progress()
        progress.current_question = None if question_id is None else str(question_id)
        return self.save_progress(progress)

    def save_query(self, question_id: Union[str, int], query: Any) -> bool:
        if not isinstance(query, str):
            logger.warning("Query must be a string, got %s", type(query).__name__)
            return False
        progress = self.get_progress()
        progress.saved_queries[str(question_id)] = query.strip()
        return self.save_progress(progress)

    def get_saved_query(self, question_id: Optional[Union[str, int]]) -> str:
        if question_id is None:
            return ""
        return self.get_progress().saved_queries.get(str(question_id), "")

    def reset_progress(self) -> bool:
        try:
            self.store.remove_item(STORAGE_KEY)
            return True
        except StorageError as exc:
            logger.error("Failed to reset progress: %s", exc)
            return False

    def export_progress(self) -> str:
        try:
            return json.dumps(self.get_progress().to_dict(), indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            logger.error("Failed to export progress: %s", exc)
            return ""

    def import_progress(self, payload: Union[str, bytes]) -> bool:
        try:
            progress = Progress.from_dict(json.loads(payload))
        except (TypeError, ValueError, RecursionError) as exc:
            logger.error("Failed to import progress: %s", exc)
            return False
        return self.save_progress(progress)


# ==========================
# Theme preference
# ==========================
class ThemeStore:
    def __init__(self, store: LocalStore) -> None:
        self.store = store

    def get_theme(self) -> str:
        try:
            saved = self.store.get_item(THEME_KEY)
        except StorageError as exc:
            logger.warning("Failed to read theme: %s", exc)
            return DEFAULT_THEME
        return saved if saved in THEMES else DEFAULT_THEME

    def set_theme(self, theme: str) -> bool:
        if theme not in THEMES:
            raise ValueError(f"Unknown theme: {theme}")
        try:
            self.store.set_item(THEME_KEY, theme)
            return True
        except StorageError as exc:
            logger.warning("Failed to save theme: %s", exc)
            return False

    def toggle_theme(self) -> str:
        theme = "light" if self.get_theme() == "dark" else "dark"
        self.set_theme(theme)
        return theme
