"""Configuration management for autoprovider."""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/125.0.0.0 Safari/537.36"
)


@dataclass(frozen=True)
class Config:
    """Global configuration."""

    http_timeout: float = 15.0
    max_workers: int = 6
    user_agent: str = DEFAULT_USER_AGENT
    test_query: str = "naruto"
    home: str | None = None

    @classmethod
    def from_env(cls) -> Config:
        return cls(
            http_timeout=float(os.getenv("AUTOPROVIDER_TIMEOUT", "15")),
            max_workers=max(1, int(os.getenv("AUTOPROVIDER_MAX_WORKERS", "6"))),
            user_agent=os.getenv("AUTOPROVIDER_USER_AGENT") or DEFAULT_USER_AGENT,
            test_query=os.getenv("AUTOPROVIDER_TEST_QUERY") or "naruto",
            home=os.getenv("AUTOPROVIDER_HOME") or None,
        )
