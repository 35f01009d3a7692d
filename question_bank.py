from __future__ import annotations

import json
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from config import settings
from db_sandbox import DATABASE_NAMES


DIFFICULTIES = ("easy", "medium", "hard")
COMPLETION_OPTIONS = ("all", "incomplete", "complete")
KEYWORDS = (
    "select", "where", "distinct", "group by", "having", "in",
    "join", "like", "null", "case", "order by", "limit",
    "count", "avg", "sum", "max", "min",
)

REQUIRED_FIELDS = ("id", "title", "description", "difficulty", "category", "database", "expected_query")


class CatalogError(ValueError):
    """Raised when the question catalog is malformed."""


@dataclass(frozen=True)
class Question:
    id: str
    title: str
    description: str
    difficulty: str
    category: str
    database: str
    expected_query: str
    hint: Optional[str] = None
    keywords: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Question":
        missing = [name for name in REQUIRED_FIELDS if not data.get(name)]
        if missing:
            raise CatalogError(f"Question is missing fields: {', '.join(missing)}")
        if data["difficulty"] not in DIFFICULTIES:
            raise CatalogError(f"Question {data['id']} has unknown difficulty {data['difficulty']!r}")
        if data["database"] not in DATABASE_NAMES:
            raise CatalogError(f"Question {data['id']} targets unknown database {data['database']!r}")

        return cls(
            id=str(data["id"]),
            title=data["title"],
            description=data["description"],
            difficulty=data["difficulty"],
            category=data["category"],
            database=data["database"],
            expected_query=data["expected_query"],
            hint=data.get("hint") or None,
            keywords=tuple(kw for kw in data.get("keywords") or () if kw),
        )


def parse_questions(payload: Dict[str, Any]) -> Tuple[Question, ...]:
    questions: List[Question] = []
    seen = set()
    for entry in payload.get("questions", []):
        question = Question.from_dict(entry)
        if question.id in seen:
            raise CatalogError(f"Duplicate question id {question.id}")
        seen.add(question.id)
        questions.append(question)
    return tuple(questions)


@lru_cache(maxsize=4)
def _load_questions_cached(path: str) -> Tuple[Question, ...]:
    with open(path, encoding="utf-8") as handle:
        try:
            payload = json.load(handle)
        except json.JSONDecodeError as exc:
            raise CatalogError(f"Failed to parse {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise CatalogError(f"{path} must contain a JSON object")
    return parse_questions(payload)


def load_questions(path: Optional[Path] = None) -> Tuple[Question, ...]:
    """Return the bundled question catalog, parsed once per path."""

    return _load_questions_cached(str(path or settings.questions_path))


def find_question(questions: Iterable[Question], question_id: Optional[str]) -> Optional[Question]:
    for question in questions:
        if question.id == question_id:
            return question
    return None


# ==========================
# Filters
# ==========================
@dataclass
class Filters:
    database: str = settings.default_database
    difficulty: str = "all"
    completion: str = "all"
    keywords: List[str] = field(default_factory=list)

    def toggle_difficulty(self, difficulty: str) -> None:
        """Select ``difficulty``, or go back to ``all`` when it is already selected."""
        self.difficulty = "all" if self.difficulty == difficulty else difficulty

    def toggle_keyword(self, keyword: str) -> None:
        if keyword in self.keywords:
            self.keywords = [kw for kw in self.keywords if kw != keyword]
        else:
            self.keywords = self.keywords + [keyword]

    def clear(self) -> None:
        self.difficulty = "all"
        self.completion = "all"
        self.keywords = []


def _matches_keywords(question: Question, keywords: Sequence[str]) -> bool:
    tags = [tag.lower() for tag in question.keywords]
    return any(kw.lower() in tag for kw in keywords for tag in tags)


def filter_questions(
    questions: Iterable[Question], filters: Filters, completed: Iterable[str]
) -> List[Question]:
    completed_ids = set(completed)
    result = []
    for question in questions:
        if question.database != filters.database:
            continue
        if filters.difficulty != "all" and question.difficulty != filters.difficulty:
            continue

        is_complete = question.id in completed_ids
        if filters.completion == "complete" and not is_complete:
            continue
        if filters.completion == "incomplete" and is_complete:
            continue

        if filters.keywords and not _matches_keywords(question, filters.keywords):
            continue
        result.append(question)
    return result


def question_stats(
    questions: Iterable[Question], filters: Filters, completed: Iterable[str]
) -> Dict[str, int]:
    questions = list(questions)
    completed_ids = set(completed)
    db_questions = [q for q in questions if q.database == filters.database]
    return {
        "total": len(db_questions),
        "filtered": len(filter_questions(questions, filters, completed_ids)),
        "completed": sum(1 for q in db_questions if q.id in completed_ids),
    }


def navigate(
    filtered: Sequence[Question], current_id: Optional[str], direction: int
) -> Optional[Question]:
    """Return the question ``direction`` steps away, clamped to the list.

    ``None`` means there is nowhere to move.
    """
    ids = [q.id for q in filtered]
    if current_id not in ids:
        return None
    current_index = ids.index(current_id)
    new_index = min(max(current_index + direction, 0), len(filtered) - 1)
    if new_index == current_index:
        return None
    return filtered[new_index]
