from __future__ import annotations

import json
import logging
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from course_analyzer.assessment import AssessmentClient
from course_analyzer.config import AnalyzerSettings
from course_analyzer.ingestion import SourceFile
from course_analyzer.pipeline import analyze_batch
from course_analyzer.rate_limiting import RateLimiter
from course_analyzer.schema_models import AnalysisResult

logger = logging.getLogger(__name__)

PENDING = "PENDING"
PROCESSING = "PROCESSING"
COMPLETED = "COMPLETED"
FAILED = "FAILED"
SESSION_STATUSES = (PENDING, PROCESSING, COMPLETED, FAILED)


class SessionStore(Protocol):
    def create_session(self, user_id: str) -> dict:
        ...

    def update_status(self, session_id: str, status: str) -> dict:
        ...

    def add_file(self, session_id: str, source: SourceFile) -> dict:
        ...

    def list_files(self, session_id: str) -> list[dict]:
        ...

    def read_file(self, file_record: dict) -> SourceFile:
        ...

    def create_result(self, file_id: str, session_id: str, result: AnalysisResult) -> dict:
        ...

    def get_session(self, session_id: str) -> dict | None:
        ...

    def list_user_sessions(self, user_id: str) -> list[dict]:
        ...


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _atomic_write_json(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    ) as handle:
        json.dump(payload, handle, indent=2)
        handle.flush()
        temp_path = Path(handle.name)
    temp_path.replace(path)


def _public_file(record: dict) -> dict:
    return {key: value for key, value in record.items() if key != "storage_path"}


class JsonSessionStore:
    """Session, file and result records kept in one JSON document; file bytes live beside it."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.path = self.data_dir / "sessions.json"
        self.upload_dir = self.data_dir / "uploads"
        self._lock = threading.RLock()

    def _load(self) -> dict:
        if not self.path.exists():
            return {"updated_at": None, "sessions": []}
        return json.loads(self.path.read_text(encoding="utf-8"))

    def _save(self, store: dict) -> None:
        store["updated_at"] = _utc_now()
        _atomic_write_json(self.path, store)

    @staticmethod
    def _find(store: dict, session_id: str) -> dict:
        for session in store.get("sessions", []):
            if session["id"] == session_id:
                return session
        raise KeyError(f"Unknown session '{session_id}'.")

    def create_session(self, user_id: str) -> dict:
        with self._lock:
            store = self._load()
            session = {
                "id": f"s_{uuid4().hex[:12]}",
                "user_id": user_id,
                "status": PENDING,
                "created_at": _utc_now(),
                "completed_at": None,
                "files": [],
                "results": [],
            }
            store["sessions"].append(session)
            self._save(store)
            return session

    def update_status(self, session_id: str, status: str) -> dict:
        if status not in SESSION_STATUSES:
            raise ValueError(f"Unknown session status '{status}'.")
        with self._lock:
            store = self._load()
            session = self._find(store, session_id)
            session["status"] = status
            if status == COMPLETED:
                session["completed_at"] = _utc_now()
            self._save(store)
            return session

    def add_file(self, session_id: str, source: SourceFile) -> dict:
        with self._lock:
            store = self._load()
            session = self._find(store, session_id)
            file_id = f"f_{uuid4().hex[:12]}"
            storage_path = self.upload_dir / session_id / file_id
            storage_path.parent.mkdir(parents=True, exist_ok=True)
            storage_path.write_bytes(source.content)

            record = {
                "id": file_id,
                "original_name": source.name,
                "file_type": source.content_type,
                "size": source.size,
                "uploaded_at": _utc_now(),
                "storage_path": str(storage_path),
            }
            session["files"].append(record)
            self._save(store)
            return _public_file(record)

    def list_files(self, session_id: str) -> list[dict]:
        with self._lock:
            return list(self._find(self._load(), session_id)["files"])

    def read_file(self, file_record: dict) -> SourceFile:
        path = Path(file_record.get("storage_path") or "")
        try:
            content = path.read_bytes()
        except OSError as exc:
            logger.warning("Stored file for '%s' is unreadable: %s", file_record.get("original_name"), exc)
            content = b""
        return SourceFile(
            name=file_record.get("original_name") or file_record["id"],
            content=content,
            content_type=file_record.get("file_type"),
        )

    def create_result(self, file_id: str, session_id: str, result: AnalysisResult) -> dict:
        with self._lock:
            store = self._load()
            session = self._find(store, session_id)
            record = {
                "id": f"r_{uuid4().hex[:12]}",
                "file_id": file_id,
                "session_id": session_id,
                "created_at": _utc_now(),
                **result.to_dict(),
            }
            session["results"].append(record)
            self._save(store)
            return record

    def get_session(self, session_id: str) -> dict | None:
        with self._lock:
            try:
                session = self._find(self._load(), session_id)
            except KeyError:
                return None
        return {**session, "files": [_public_file(record) for record in session["files"]]}

    def list_user_sessions(self, user_id: str) -> list[dict]:
        with self._lock:
            sessions = [session for session in self._load()["sessions"] if session["user_id"] == user_id]
        sessions.sort(key=lambda session: session["created_at"], reverse=True)
        return [{**session, "files": [_public_file(record) for record in session["files"]]} for session in sessions]


@dataclass
class AnalysisSessionService:
    store: SessionStore
    client: AssessmentClient
    rate_limiter: RateLimiter
    settings: AnalyzerSettings

    def create_session(self, user_id: str) -> dict:
        return self.store.create_session(user_id)

    def add_file(self, session_id: str, source: SourceFile) -> dict:
        return self.store.add_file(session_id, source)

    async def start_analysis(self, session_id: str) -> list[dict]:
        """Analyze every file of a session and persist one result per file."""
        if self.store.get_session(session_id) is None:
            raise KeyError(f"Unknown session '{session_id}'.")

        self.store.update_status(session_id, PROCESSING)
        try:
            files = self.store.list_files(session_id)
            sources = [self.store.read_file(record) for record in files]
            results = await analyze_batch(
                sources,
                self.client,
                rate_limiter=self.rate_limiter,
                settings=self.settings,
            )
            stored = [
                self.store.create_result(record["id"], session_id, result)
                for record, result in zip(files, results)
            ]
        except Exception:
            logger.exception("Analysis of session %s failed.", session_id)
            self.store.update_status(session_id, FAILED)
            raise

        self.store.update_status(session_id, COMPLETED)
        return stored

    def get_session_results(self, session_id: str) -> dict | None:
        return self.store.get_session(session_id)

    def get_user_sessions(self, user_id: str) -> list[dict]:
        return self.store.list_user_sessions(user_id)
