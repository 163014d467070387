# ruff: noqa: INP001, S101

from __future__ import annotations

import pytest
from pydantic import ValidationError

from webhook_intake.core.config import DEFAULT_PROCESSOR_PATH, Settings


def test_defaults_match_documented_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("WEBHOOK_MAX_ATTEMPTS", raising=False)
    config = Settings(_env_file=None)

    assert config.webhook_max_attempts == 3
    assert config.webhook_batch_size == 10
    assert config.webhook_backoff_base_seconds == 1.0
    assert config.webhook_backoff_max_seconds == 60.0
    assert config.webhook_backoff_jitter_ratio == 0.3
    assert config.webhook_require_signature is True
    assert config.webhook_signature_header == "X-Shopify-Hmac-Sha256"
    assert config.webhook_tenant_header == "X-Shopify-Shop-Domain"
    assert config.webhook_processor == DEFAULT_PROCESSOR_PATH


def test_environment_variables_override_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WEBHOOK_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("WEBHOOK_SHARED_SECRET", "from-env")
    monkeypatch.setenv("LOG_FORMAT", "json")

    config = Settings(_env_file=None)

    assert config.webhook_max_attempts == 5
    assert config.webhook_shared_secret == "from-env"
    assert config.log_format == "json"


@pytest.mark.parametrize(
    "overrides",
    [
        {"webhook_batch_size": 0},
        {"webhook_max_attempts": 0},
        {"webhook_backoff_jitter_ratio": 1.5},
        {"webhook_backoff_base_seconds": 120.0, "webhook_backoff_max_seconds": 60.0},
        {"webhook_claim_timeout_seconds": 10.0, "webhook_item_timeout_seconds": 30.0},
        {"log_format": "xml"},
    ],
)
def test_invalid_settings_are_rejected(overrides: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **overrides)


def test_claim_timeout_zero_disables_the_check() -> None:
    config = Settings(_env_file=None, webhook_claim_timeout_seconds=0)
    assert config.webhook_claim_timeout_seconds == 0
