"""Tests for the rate limiter and shared client helpers."""

from __future__ import annotations

import time

import allure
import pytest

from mavin.services.api.api_base import BaseProviderClient, EnhancedRateLimiter


@allure.epic("Mavin Cache")
@allure.feature("Providers")
@allure.sub_suite("Rate limiting")
class TestEnhancedRateLimiter:
    @pytest.mark.parametrize(("requests", "window"), [(0, 1.0), (5, 0.0), (-1, 1.0)])
    def test_rejects_non_positive_settings(self, requests: int, window: float) -> None:
        with pytest.raises(ValueError, match="positive"):
            EnhancedRateLimiter(requests_per_window=requests, window_seconds=window)

    @pytest.mark.asyncio
    async def test_waits_when_window_is_full(self) -> None:
        limiter = EnhancedRateLimiter(requests_per_window=2, window_seconds=0.2)

        start = time.monotonic()
        assert await limiter.acquire() == 0.0
        assert await limiter.acquire() == 0.0
        waited = await limiter.acquire()
        elapsed = time.monotonic() - start

        assert waited > 0
        assert elapsed >= 0.15
        stats = limiter.get_stats()
        assert stats["total_requests"] == 3
        assert stats["requests_per_window"] == 2


class TestNameNormalization:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("Burna Boy", "burna boy"),
            ("Simon & Garfunkel", "simon and garfunkel"),
            ("  AC/DC!! ", "acdc"),
            ("Beyoncé", "beyoncé"),
            ("", ""),
        ],
    )
    def test_normalize_name(self, raw: str, expected: str) -> None:
        assert BaseProviderClient._normalize_name(raw) == expected
