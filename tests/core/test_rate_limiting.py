# tests/core/test_rate_limiting.py
"""Tests for client IP resolution and the 429 response."""

import json
from unittest.mock import Mock

import pytest
from fastapi import Request
from slowapi.errors import RateLimitExceeded

from fleetauth.core.rate_limit_config import RATE_LIMIT_MESSAGE, get_real_ip, rate_limit_exceeded_handler


def make_request(headers=None, client=("10.0.0.9", 51234), path="/api/v1/profile"):
    scope = {
        "type": "http",
        "method": "PUT",
        "path": path,
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestGetRealIp:

    @pytest.mark.parametrize("headers,expected", [
        ({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}, "203.0.113.7"),
        ({"X-Real-IP": "198.51.100.4"}, "198.51.100.4"),
        ({"X-Forwarded-For": "203.0.113.7", "X-Real-IP": "198.51.100.4"}, "203.0.113.7"),
        ({}, "10.0.0.9"),
    ])
    def test_resolution_order(self, headers, expected):
        assert get_real_ip(make_request(headers)) == expected


class TestRateLimitHandler:

    def test_error_envelope(self):
        exc = RateLimitExceeded(Mock(error_message="3 per 1 minute"))

        response = rate_limit_exceeded_handler(make_request(), exc)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert json.loads(response.body) == {
            "error": {"code": "rate_limited", "message": RATE_LIMIT_MESSAGE}
        }
