import pytest

from backend.app.config import load_database_config, load_matching_config


def test_matching_config_defaults() -> None:
    config = load_matching_config({})

    assert config.cache_ttl_seconds == 300
    assert config.max_notified == 15
    assert config.radius_immediate_km == 15.0
    assert config.radius_scheduled_km == 50.0
    assert config.persist_scores is True
    assert config.billing_period_days == 30
    assert config.referral_max_discount_months == 3
    assert config.referral_discount_rate == 0.5
    assert config.cache_backend == "memory"
    assert config.redis_url == "redis://localhost:6379/0"
    assert config.realtime_channel == "counters:update"


def test_matching_config_reads_environment() -> None:
    config = load_matching_config(
        {
            "MATCHING_CACHE_TTL_SECONDS": "60",
            "MATCHING_MAX_NOTIFIED": "5",
            "MATCHING_PERSIST_SCORES": "off",
            "MATCHING_CACHE_BACKEND": "Redis",
            "REFERRAL_DISCOUNT_RATE": "1.5",
            "REDIS_URL": "redis://cache:6379/2",
        }
    )

    assert config.cache_ttl_seconds == 60
    assert config.max_notified == 5
    assert config.persist_scores is False
    assert config.cache_backend == "redis"
    assert config.referral_discount_rate == 1.0
    assert config.redis_url == "redis://cache:6379/2"


def test_matching_config_rejects_malformed_values() -> None:
    with pytest.raises(ValueError):
        load_matching_config({"MATCHING_MAX_NOTIFIED": "many"})
    with pytest.raises(ValueError):
        load_matching_config({"MATCHING_CACHE_BACKEND": "memcached"})


def test_database_config_from_environment() -> None:
    config = load_database_config({"DB_HOST": "db", "DB_PORT": "6543", "DB_PASSWORD": ""})

    assert config.host == "db"
    assert config.port == 6543
    assert config.password is None
    assert config.connect_timeout == 5.0
