from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from ledger_service.config import Settings
from ledger_service.domain.service import LedgerService
from ledger_service.main import build_app, wire_services

from fakes import FakeLedgerRepository, FakeUserRepository, SteppingClock


@pytest.fixture
def settings() -> Settings:
    return Settings(
        jwt_secret="test-signing-key-0123456789abcdef",
        jwt_issuer="API Conta Bancária",
        rate_limit_backend="memory",
        login_max_failures=3,
        login_window_seconds=60,
        cors_origins=("*",),
    )


@pytest.fixture
def ledger_repository() -> FakeLedgerRepository:
    return FakeLedgerRepository()


@pytest.fixture
def ledger(ledger_repository: FakeLedgerRepository) -> LedgerService:
    return LedgerService(ledger_repository, clock=SteppingClock())


@dataclass
class ApiContext:
    client: TestClient
    ledger_repository: FakeLedgerRepository
    users: FakeUserRepository


@pytest.fixture
def api(settings: Settings, ledger_repository: FakeLedgerRepository) -> Iterator[ApiContext]:
    """Provide a FastAPI test client wired to in-memory repositories."""
    users = FakeUserRepository()
    app = build_app(settings)
    wire_services(app, settings, ledger_repository, users)
    app.state.credential_service.register("admin", "123456")

    with TestClient(app) as client:
        yield ApiContext(client=client, ledger_repository=ledger_repository, users=users)


@pytest.fixture
def auth_headers(api: ApiContext) -> dict[str, str]:
    response = api.client.post("/login", json={"login": "admin", "password": "123456"})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}
