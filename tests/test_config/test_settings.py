"""Tests for scraper configuration and its environment defaults."""

from pathlib import Path

import pytest

from agentic_scraper.config.settings import (
    BrowserConfig,
    RetryConfig,
    ScraperConfig,
    TimeoutConfig,
)


def test_retry_defaults(monkeypatch):
    monkeypatch.delenv("SCRAPER_MAX_RETRIES", raising=False)
    cfg = RetryConfig()
    assert cfg.max_retries == 5
    assert cfg.execution_failure_policy == "repair"


def test_retry_budget_from_environment(monkeypatch):
    monkeypatch.setenv("SCRAPER_MAX_RETRIES", "2")
    assert RetryConfig().max_retries == 2


def test_retry_rejects_non_positive_budget():
    with pytest.raises(ValueError):
        RetryConfig(max_retries=0)


def test_retry_rejects_unknown_policy():
    with pytest.raises(ValueError):
        RetryConfig(execution_failure_policy="ignore")


def test_timeout_defaults():
    cfg = TimeoutConfig()
    assert cfg.page_load_timeout_s == 30
    assert cfg.generation_timeout_s == 120
    assert cfg.execution_timeout_s == 10.0


def test_headless_from_environment(monkeypatch):
    monkeypatch.setenv("SCRAPER_HEADLESS", "false")
    assert BrowserConfig().headless is False
    monkeypatch.setenv("SCRAPER_HEADLESS", "true")
    assert BrowserConfig().headless is True


def test_signals_dir_optional(monkeypatch, tmp_path):
    monkeypatch.delenv("SCRAPER_SIGNALS_DIR", raising=False)
    assert ScraperConfig().signals_dir is None
    monkeypatch.setenv("SCRAPER_SIGNALS_DIR", str(tmp_path))
    assert ScraperConfig().signals_dir == Path(tmp_path)


def test_screenshot_dir_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("SCRAPER_SCREENSHOT_DIR", str(tmp_path / "shots"))
    assert ScraperConfig().observations.screenshot_dir == tmp_path / "shots"


def test_concurrency_must_be_positive():
    with pytest.raises(ValueError):
        ScraperConfig(max_concurrent_requests=0)
