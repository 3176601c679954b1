# tests/helpers.py
"""Constants and builders shared by the test suite."""

from typing import Any

import httpx

from sluice.contracts.config import RetryConfig

BASE_URL = "https://api.test/"

PARAMS = {"connection_id": 1, "name": "octo/repo"}

# Zero backoff so retry paths run instantly
FAST_RETRY = RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=0.0)


def items(count: int, start: int = 0) -> list[dict[str, Any]]:
    """`count` distinct JSON items."""
    return [{"id": start + i} for i in range(count)]


def page_number(request: httpx.Request) -> int:
    return int(request.url.params.get("page", "1"))

# Options of the `github` source matching PARAMS
GITHUB_OPTIONS = {"connection_id": 1, "name": "octo/repo", "github_id": 42, "token": "ghp_secret", "endpoint": BASE_URL}
