"""Tests for application settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from certchain.core.config import Settings


def _production(**overrides: object) -> Settings:
    values: dict[str, object] = {
        "_env_file": None,
        "environment": "production",
        "operator_api_key": "key",
        "pinata_jwt": "jwt",
        "ledger_operator_account_id": "0.0.2",
        "ledger_operator_private_key": "pem",
        "certificate_topic_id": "0.0.5005",
    }
    values.update(overrides)
    return Settings(**values)  # type: ignore[arg-type]


def test_defaults() -> None:
    settings = Settings(_env_file=None)
    assert settings.anchor_strategy == "consensus_log"
    assert settings.retry_max_attempts == 3
    assert settings.token_metadata_max_bytes == 100
    assert settings.mirror_node_url == "https://testnet.mirrornode.hedera.com"
    assert settings.explorer_url == "https://hashscan.io/testnet"


def test_mirror_node_override() -> None:
    settings = Settings(_env_file=None, mirror_node_url_override="http://localhost:5551/")
    assert settings.mirror_node_url == "http://localhost:5551"


def test_production_accepts_complete_configuration() -> None:
    assert _production().environment == "production"


@pytest.mark.parametrize(
    "overrides",
    [
        {"operator_api_key": ""},
        {"pinata_jwt": ""},
        {"ledger_operator_private_key": ""},
        {"certificate_topic_id": None},
        {"debug": True},
    ],
)
def test_production_rejects_incomplete_configuration(overrides: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        _production(**overrides)


def test_production_token_strategy_requires_token_id() -> None:
    with pytest.raises(ValidationError):
        _production(anchor_strategy="token_mint")
    assert _production(anchor_strategy="token_mint", certificate_token_id="0.0.6006")


def test_production_bootstrap_allows_missing_identifier() -> None:
    settings = _production(certificate_topic_id=None, ledger_bootstrap_enabled=True)
    assert settings.certificate_topic_id is None


def test_development_bootstrap_warns() -> None:
    with pytest.warns(UserWarning, match="certificate_topic_id"):
        Settings(_env_file=None, ledger_bootstrap_enabled=True, certificate_topic_id=None)
