# tests/test_config_validators.py

import config
import pytest
from config import PagewrightSettings


def test_zero_concurrency_raises():
    with pytest.raises(ValueError):
        PagewrightSettings(GENERATION_API_KEY="valid", BATCH_MAX_CONCURRENCY=0)


def test_negative_retries_raise():
    with pytest.raises(ValueError):
        PagewrightSettings(GENERATION_API_KEY="valid", BATCH_MAX_RETRIES=-1)


def test_unknown_estimator_raises():
    with pytest.raises(ValueError):
        PagewrightSettings(GENERATION_API_KEY="valid", TOKEN_ESTIMATOR="words")


def test_unknown_similarity_metric_raises():
    with pytest.raises(ValueError):
        PagewrightSettings(GENERATION_API_KEY="valid", DURABLE_SIMILARITY_METRIC="euclid")


def test_missing_tier_budget_raises():
    with pytest.raises(ValueError):
        PagewrightSettings(
            GENERATION_API_KEY="valid", CONTEXT_TIER_BUDGETS={"minimal": 100}
        )


def test_placeholder_api_key_warns(monkeypatch):
    warnings: list[str] = []

    def fake_warning(msg: str, **_kw: object) -> None:
        warnings.append(msg)

    monkeypatch.setattr(config.logger, "warning", fake_warning)
    PagewrightSettings(GENERATION_API_KEY="nope")
    assert any("GENERATION_API_KEY" in msg for msg in warnings)


def test_durable_cache_path_is_under_output_dir(monkeypatch):
    monkeypatch.setattr(config.settings, "DURABLE_CACHE_DB_PATH", "c.sqlite3")
    monkeypatch.setattr(config.settings, "BASE_OUTPUT_DIR", "out")
    assert config.durable_cache_path().endswith("c.sqlite3")
    assert config.durable_cache_path().startswith("out")
