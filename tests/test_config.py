"""
tests/test_config.py -- Settings validation in core/config.py.
"""

from __future__ import annotations

import pydantic
import pytest

from core.config import Settings


def test_defaults() -> None:
    settings = Settings(_env_file=None)
    assert settings.default_page_size == 50
    assert settings.max_page_size == 100
    assert settings.credential_cache_ttl == 15


def test_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("MAX_PAGE_SIZE", "20")
    monkeypatch.setenv("DEFAULT_PAGE_SIZE", "10")
    monkeypatch.setenv("CREDENTIAL_CACHE_TTL", "0")
    settings = Settings(_env_file=None)
    assert settings.max_page_size == 20
    assert settings.default_page_size == 10
    assert settings.credential_cache_ttl == 0


@pytest.mark.parametrize(
    "overrides",
    [
        {"default_page_size": 200},
        {"default_page_size": 0},
        {"max_page_size": 0},
        {"credential_cache_ttl": -1},
    ],
)
def test_invalid_values_are_refused(overrides) -> None:
    with pytest.raises(pydantic.ValidationError):
        Settings(_env_file=None, **overrides)
