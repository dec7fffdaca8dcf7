"""
Settings and error-payload tests.
"""

import pytest

from fhe_relayer.config import DEFAULT_CHAIN_ID, RelayerSettings, parse_api_keys
from fhe_relayer.engine.authenticator import DEFAULT_PROTOCOL_TAG
from fhe_relayer.engine.exceptions import (
    ConfigurationError,
    EngineUnavailable,
    InvalidNonce,
    RelayerError,
    error_from_dict,
)

ENV_VARS = [
    "RPC_URL",
    "CHAIN_ID",
    "PORT",
    "RELAYER_API_KEYS",
    "DECRYPTION_DURATION_DAYS",
    "SESSION_TTL_SECONDS",
    "PROTOCOL_TAG",
    "RPC_TIMEOUT",
    "ENGINE_INIT_ATTEMPTS",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    settings = RelayerSettings.from_env()

    assert settings.rpc_url is None
    assert settings.chain_id == DEFAULT_CHAIN_ID
    assert settings.port == 4000
    assert settings.api_keys == []
    assert settings.decryption_duration_days == 365
    assert settings.protocol_tag == DEFAULT_PROTOCOL_TAG


def test_from_env(clean_env):
    clean_env.setenv("RPC_URL", "http://localhost:8545")
    clean_env.setenv("CHAIN_ID", "31337")
    clean_env.setenv("PORT", "8080")
    clean_env.setenv("RELAYER_API_KEYS", "rk_a, rk_b,,")
    clean_env.setenv("DECRYPTION_DURATION_DAYS", "10")

    settings = RelayerSettings.from_env()

    assert settings.require_rpc_url() == "http://localhost:8545"
    assert settings.chain_id == 31337
    assert settings.port == 8080
    assert settings.api_keys == ["rk_a", "rk_b"]
    assert settings.decryption_duration_days == 10


@pytest.mark.parametrize("name, value", [
    ("CHAIN_ID", "sepolia"),
    ("PORT", "70000"),
    ("DECRYPTION_DURATION_DAYS", "0"),
])
def test_invalid_values(clean_env, name, value):
    clean_env.setenv(name, value)
    with pytest.raises(ConfigurationError):
        RelayerSettings.from_env()


def test_missing_rpc_url(clean_env):
    with pytest.raises(ConfigurationError):
        RelayerSettings.from_env().require_rpc_url()


def test_parse_api_keys():
    assert parse_api_keys(None) == []
    assert parse_api_keys("") == []
    assert parse_api_keys(" one ,two ") == ["one", "two"]


def test_error_payload_roundtrip():
    error = InvalidNonce("Invalid nonce", details={"expected": 2, "provided": 1})
    payload = error.to_dict()

    assert payload == {
        "error": "Invalid nonce",
        "kind": "invalid_nonce",
        "retryable": False,
        "details": {"expected": 2, "provided": 1},
    }
    rebuilt = error_from_dict(payload, 409)
    assert isinstance(rebuilt, InvalidNonce)
    assert rebuilt.details == error.details


def test_error_from_unknown_kind():
    rebuilt = error_from_dict({"error": "boom", "kind": "something_new"}, 500)
    assert type(rebuilt) is RelayerError
    assert rebuilt.message == "boom"


def test_retryable_flag():
    assert EngineUnavailable("down").to_dict()["retryable"] is True
    assert EngineUnavailable.status_code == 503
