"""Unit tests for cafe_guard/ratelimit/identity.py: client id precedence."""

from __future__ import annotations

from cafe_guard.ratelimit.identity import bearer_token, resolve_client_id


class TestResolveClientId:
    def test_forwarded_for_first_entry_wins(self) -> None:
        headers = {
            "X-Forwarded-For": "1.2.3.4, 10.0.0.1",
            "X-Real-IP": "9.9.9.9",
            "Authorization": "Bearer abc",
        }
        assert resolve_client_id(headers) == "1.2.3.4"

    def test_real_ip_when_no_forwarded_for(self) -> None:
        headers = {"X-Real-IP": "9.9.9.9", "Authorization": "Bearer abc"}
        assert resolve_client_id(headers) == "9.9.9.9"

    def test_bearer_token_pseudo_id(self) -> None:
        client_id = resolve_client_id({"Authorization": "Bearer abc"})
        assert client_id.startswith("user:")
        assert "abc" not in client_id
        assert client_id == resolve_client_id({"Authorization": "Bearer abc"})
        assert client_id != resolve_client_id({"Authorization": "Bearer xyz"})

    def test_unknown_when_nothing_identifies_the_client(self) -> None:
        assert resolve_client_id({}) == "unknown"
        assert resolve_client_id({"Authorization": "Basic dXNlcjpwdw=="}) == "unknown"

    def test_blank_forwarded_for_falls_through(self) -> None:
        assert resolve_client_id({"X-Forwarded-For": " ", "X-Real-IP": "9.9.9.9"}) == "9.9.9.9"


class TestBearerToken:
    def test_extracts_token(self) -> None:
        assert bearer_token({"Authorization": "Bearer tok.en.value"}) == "tok.en.value"

    def test_missing_or_empty(self) -> None:
        assert bearer_token({}) is None
        assert bearer_token({"Authorization": "Bearer "}) is None
        assert bearer_token({"Authorization": "Token abc"}) is None
