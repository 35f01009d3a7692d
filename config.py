from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Settings:
    data_dir: Path = Path(os.getenv("SQL_PRACTICE_DATA_DIR", Path(__file__).parent / "data"))
    storage_path: Path = Path(
        os.getenv("SQL_PRACTICE_STORAGE_PATH", Path.home() / ".sql_practice" / "storage.json")
    )
    storage_quota_bytes: int = int(os.getenv("SQL_PRACTICE_STORAGE_QUOTA", str(5 * 1024 * 1024)))

    query_timeout_ms: int = int(os.getenv("SQL_PRACTICE_QUERY_TIMEOUT_MS", "2500"))
    display_rows: int = int(os.getenv("SQL_PRACTICE_DISPLAY_ROWS", "50"))
    default_database: str = os.getenv("SQL_PRACTICE_DEFAULT_DATABASE", "hospital")

    log_level: str = os.getenv("SQL_PRACTICE_LOG_LEVEL", "INFO")

    @property
    def databases_dir(self) -> Path:
        return self.data_dir / "databases"

    @property
    def questions_path(self) -> Path:
        return self.data_dir / "questions.json"


settings = Settings()
