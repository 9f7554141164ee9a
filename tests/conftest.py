"""
Pytest fixtures for certificate pipeline tests.
Provides settings, in-memory collaborators and wired services.
"""

from collections.abc import AsyncGenerator, Iterator
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from certchain.core.config import Settings, get_settings
from certchain.main import create_application
from certchain.modules.certificates.dependencies import get_repository
from certchain.modules.certificates.pipeline import IssuancePipeline
from certchain.modules.certificates.verification import VerificationService
from tests.fakes import OPERATOR_KEY, FakeContentStore, FakeLedgerAnchor, FakeRepository


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Fast retries and a known operator key for every test."""
    monkeypatch.setenv("OPERATOR_API_KEY", OPERATOR_KEY)
    monkeypatch.setenv("RETRY_BASE_DELAY_SECONDS", "0")
    monkeypatch.setenv("ENVIRONMENT", "development")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        operator_api_key=OPERATOR_KEY,
        retry_max_attempts=3,
        retry_base_delay_seconds=0.0,
        public_base_url="https://certs.example.org",
        ipfs_gateway_url="https://gateway.test",
    )


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def store() -> FakeContentStore:
    return FakeContentStore()


@pytest.fixture
def anchor() -> FakeLedgerAnchor:
    return FakeLedgerAnchor()


@pytest.fixture
def pipeline(
    repository: FakeRepository,
    store: FakeContentStore,
    anchor: FakeLedgerAnchor,
    settings: Settings,
) -> IssuancePipeline:
    return IssuancePipeline(repository, store, anchor, settings=settings)  # type: ignore[arg-type]


@pytest.fixture
def verifier(
    repository: FakeRepository,
    store: FakeContentStore,
    anchor: FakeLedgerAnchor,
    settings: Settings,
) -> VerificationService:
    return VerificationService(
        store,  # type: ignore[arg-type]
        {"consensus_log": anchor},  # type: ignore[dict-item]
        repository=repository,  # type: ignore[arg-type]
        settings=settings,
    )


@pytest.fixture
def certificate_content() -> dict[str, Any]:
    return {
        "recipientName": "Ada Lovelace",
        "recipientEmail": "Ada@Example.com",
        "issuerName": "Analytical Engines Academy",
        "issuerOrganization": "AEA",
        "courseName": "Foundations of Computing",
        "completionDate": "2024-06-30",
        "issueTimestamp": 1719705600000,
    }


@pytest_asyncio.fixture
async def api_client(
    repository: FakeRepository,
    store: FakeContentStore,
    anchor: FakeLedgerAnchor,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the application with in-memory collaborators."""
    app = create_application()
    app.state.content_store = store
    app.state.anchor = anchor
    app.state.anchors = {"consensus_log": anchor}
    app.dependency_overrides[get_repository] = lambda: repository

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()
