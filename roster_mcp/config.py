from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

DEFAULT_BASE_URL = "https://firestore.googleapis.com/v1"
DEFAULT_TIMEZONE = "Asia/Ho_Chi_Minh"


@dataclass(frozen=True)
class StoreConfig:
    project_id: str
    api_key: str
    database: str = "(default)"

    @property
    def documents_path(self) -> str:
        return f"/projects/{self.project_id}/databases/{self.database}/documents"


@dataclass(frozen=True)
class RuntimeConfig:
    base_url: str
    artifact_root: Path
    timezone: str
    scoring_file: Path | None


def load_env(dotenv_path: str | Path | None = None) -> None:
    path = Path(dotenv_path) if dotenv_path else None
    if path and path.exists():
        load_dotenv(path)
        return
    load_dotenv()


def runtime_config() -> RuntimeConfig:
    base_url = os.getenv("ROSTER_FIRESTORE_BASE_URL", DEFAULT_BASE_URL).rstrip("/")
    artifact_root = Path(os.getenv("ROSTER_ARTIFACT_DIR", "./artifacts")).expanduser().resolve()
    tz = os.getenv("ROSTER_TIMEZONE", "").strip() or DEFAULT_TIMEZONE
    scoring = os.getenv("ROSTER_SCORING_FILE", "").strip()
    artifact_root.mkdir(parents=True, exist_ok=True)
    return RuntimeConfig(
        base_url=base_url,
        artifact_root=artifact_root,
        timezone=tz,
        scoring_file=Path(scoring).expanduser() if scoring else None,
    )


def get_store_config() -> StoreConfig:
    project_id = os.getenv("ROSTER_FIRESTORE_PROJECT_ID", "").strip()
    api_key = os.getenv("ROSTER_FIRESTORE_API_KEY", "").strip()
    if not project_id or not api_key:
        raise ValueError(
            "Missing Firestore credentials. "
            "Expected env vars ROSTER_FIRESTORE_PROJECT_ID and ROSTER_FIRESTORE_API_KEY."
        )
    database = os.getenv("ROSTER_FIRESTORE_DATABASE", "").strip() or "(default)"
    return StoreConfig(project_id=project_id, api_key=api_key, database=database)


def load_scoring(scoring_file: Path | None) -> dict[str, Any]:
    """Scoring weight overrides; an unset or missing file means the defaults."""
    if scoring_file is None or not scoring_file.exists():
        return {}
    with scoring_file.open("r", encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise ValueError(f"{scoring_file} must contain a JSON object of scoring weights")
    return data
