"""
Test fixtures and configuration for pytest.
"""

import asyncio
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Set

import pytest
from fastapi.testclient import TestClient

from intake.auth import Role, User, issue_token
from intake.config import Settings, get_settings
from intake.exceptions import StorageError
from intake.records import EventRecord, EventType, new_event_id
from intake.services.audit_log import AuditLog, get_audit_log
from intake.storage import LocalStorage


class MemoryStore:
    """
    In-memory LogStore for testing without a filesystem.

    Every operation yields to the event loop so concurrent tasks really
    interleave. `delay` stretches writes, `failing` makes paths raise
    StorageError, and the in-flight counters record how many writes
    overlapped, overall and per path.
    """

    def __init__(self, delay: float = 0.0):
        self.objects: Dict[str, str] = {}
        self.delay = delay
        self.failing: Set[str] = set()
        self.reads = 0
        self.calls: List[tuple] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.in_flight_by_path: Dict[str, int] = defaultdict(int)
        self.max_in_flight_by_path: Dict[str, int] = defaultdict(int)

    def _check(self, path: str):
        if path in self.failing:
            raise StorageError(f"Simulated backend failure: {path}", path)

    async def exists(self, path: str) -> bool:
        await asyncio.sleep(0)
        self._check(path)
        return path in self.objects

    async def read_all(self, path: str) -> str:
        await asyncio.sleep(0)
        self._check(path)
        self.reads += 1
        if path not in self.objects:
            raise StorageError(f"File not found: {path}", path)
        return self.objects[path]

    async def write_all(self, path: str, content: str) -> None:
        await self._write(path, content, append=False)

    async def append(self, path: str, content: str) -> None:
        await self._write(path, content, append=True)

    async def list(self, prefix: str) -> List[str]:
        await asyncio.sleep(0)
        self._check(prefix)
        base = prefix.rstrip("/") + "/"
        return sorted(path for path in self.objects if path.startswith(base))

    async def _write(self, path: str, content: str, append: bool):
        self._check(path)
        self.calls.append(("append" if append else "write_all", path))
        self.in_flight += 1
        self.in_flight_by_path[path] += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.max_in_flight_by_path[path] = max(
            self.max_in_flight_by_path[path], self.in_flight_by_path[path]
        )
        try:
            await asyncio.sleep(self.delay)
            if append:
                self.objects[path] = self.objects.get(path, "") + content
            else:
                self.objects[path] = content
        finally:
            self.in_flight -= 1
            self.in_flight_by_path[path] -= 1


@pytest.fixture
def memory_store() -> MemoryStore:
    """Create an in-memory store for testing."""
    return MemoryStore()


@pytest.fixture
def audit_log(memory_store: MemoryStore) -> AuditLog:
    """Audit log over the in-memory store, dates compared in UTC."""
    return AuditLog(memory_store, "audit", search_timezone=timezone.utc)


@pytest.fixture
def make_record():
    """Factory for records with sensible defaults."""
    def factory(**overrides) -> EventRecord:
        values = {
            "event_id": new_event_id(),
            "event_type": EventType.UPLOAD.value,
            "timestamp": datetime(2024, 11, 9, 14, 30, tzinfo=timezone.utc),
            "principal": "alice",
            "subject_name": "report.pdf",
            "storage_key": "2024-11-09T14-30-00_report_pdf",
            "size_bytes": 1024,
            "content_type": "application/pdf",
            "origin_address": "192.168.1.100",
            "client_descriptor": "Mozilla/5.0",
            "session_token": "sess_abc123",
            "actor": "alice",
        }
        values.update(overrides)
        return EventRecord(**values)

    return factory


# ============================================================================
# Application fixtures
# ============================================================================

@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings pointing at a temporary directory."""
    return Settings(
        _env_file=None,
        storage_path=tmp_path / "files",
        audit_index_path=tmp_path / "audit",
        dev_username="user",
        dev_password="user-password",
        admin_username="admin",
        admin_password="admin-password",
        jwt_secret_key="test-secret",
        search_timezone="UTC",
        max_file_size=1024 * 1024,
        allowed_content_types=["application/pdf", "text/"],
        listing_page_size=2,
    )


@pytest.fixture
def local_audit_log(test_settings: Settings) -> AuditLog:
    """Audit log over the local filesystem in the temporary directory."""
    return AuditLog(LocalStorage(), test_settings.audit_index_path, search_timezone=timezone.utc)


@pytest.fixture
def client(test_settings: Settings, local_audit_log: AuditLog):
    """TestClient with settings and audit log overridden."""
    from intake.main import app

    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_audit_log] = lambda: local_audit_log
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def user_headers(test_settings: Settings) -> dict:
    """Bearer header for the regular user."""
    token = issue_token(User(username="user", role=Role.USER), test_settings)
    return {"Authorization": f"Bearer {token.access_token}"}


@pytest.fixture
def admin_headers(test_settings: Settings) -> dict:
    """Bearer header for the administrator."""
    token = issue_token(User(username="admin", role=Role.ADMIN), test_settings)
    return {"Authorization": f"Bearer {token.access_token}"}
