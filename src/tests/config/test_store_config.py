"""Tests for store configuration loading."""

from kvcheckpoint.config.store_config import StoreConfig


def test_defaults(monkeypatch):
    for name in (
        "CKPT_KEY_PREFIX",
        "CKPT_MAX_KEY_LENGTH",
        "CKPT_RECORD_TTL",
        "CKPT_DEFAULT_TIMEOUT",
        "CKPT_RETRY_WRITES",
    ):
        monkeypatch.delenv(name, raising=False)

    config = StoreConfig()

    assert config.key_prefix == "ckpt"
    assert config.max_key_length == 250
    assert config.record_ttl is None
    assert config.default_timeout is None
    assert config.retry_writes is False


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CKPT_KEY_PREFIX", "app")
    monkeypatch.setenv("CKPT_RECORD_TTL", "3600")
    monkeypatch.setenv("CKPT_DEFAULT_TIMEOUT", "2.5")
    monkeypatch.setenv("CKPT_CAS_MAX_ATTEMPTS", "12")
    monkeypatch.setenv("CKPT_RETRY_WRITES", "true")
    monkeypatch.setenv("CKPT_EMULATE_ORDERING", "1")
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/2")

    config = StoreConfig()

    assert config.key_prefix == "app"
    assert config.record_ttl == 3600
    assert config.default_timeout == 2.5
    assert config.cas_max_attempts == 12
    assert config.retry_writes is True
    assert config.emulate_ordering is True
    assert config.redis_url == "redis://cache:6379/2"


def test_explicit_values_win(monkeypatch):
    monkeypatch.setenv("CKPT_LIST_BATCH_SIZE", "7")
    assert StoreConfig(list_batch_size=3).list_batch_size == 3
