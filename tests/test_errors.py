"""Tests for error normalization."""

import httpx


class TestTransportError:
    """TransportError tests."""

    def test_from_response_reads_code_and_message(self) -> None:
        """The service's error code and message should be exposed."""
        from telo_auth.errors import TransportError

        request = httpx.Request("GET", "http://identity.test/api/auth/me")
        response = httpx.Response(
            401, json={"error": "Token expired", "code": "TOKEN_EXPIRED"}, request=request
        )

        error = TransportError.from_response(response)

        assert error.status_code == 401
        assert error.code == "TOKEN_EXPIRED"
        assert error.server_message == "Token expired"
        assert "GET /api/auth/me" in str(error)

    def test_from_response_tolerates_non_json(self) -> None:
        """A non-JSON body should produce an empty payload."""
        from telo_auth.errors import TransportError

        request = httpx.Request("POST", "http://identity.test/api/auth/login")
        response = httpx.Response(502, text="Bad Gateway", request=request)

        error = TransportError.from_response(response)

        assert error.status_code == 502
        assert error.payload == {}
        assert error.code is None
        assert error.server_message is None


class TestAuthServiceError:
    """AuthServiceError tests."""

    def test_from_transport_prefers_server_values(self) -> None:
        """Server message, code and details should win over fallbacks."""
        from telo_auth.errors import AuthServiceError, ErrorCode, TransportError

        transport_error = TransportError(
            "failed",
            status_code=400,
            payload={
                "error": "Validation failed",
                "code": "VALIDATION_ERROR",
                "details": [{"field": "email"}],
            },
        )

        error = AuthServiceError.from_transport(
            transport_error, "Registration failed", ErrorCode.REGISTRATION_ERROR
        )

        assert error.message == "Validation failed"
        assert error.code == "VALIDATION_ERROR"
        assert error.details == [{"field": "email"}]

    def test_from_transport_uses_fallbacks(self) -> None:
        """Without server values the fallback message and code should be used."""
        from telo_auth.errors import AuthServiceError, ErrorCode, TransportError

        error = AuthServiceError.from_transport(
            TransportError("failed", status_code=502), "Login failed", ErrorCode.LOGIN_ERROR
        )

        assert error.message == "Login failed"
        assert error.code == "LOGIN_ERROR"
        assert error.details == []

    def test_to_dict_includes_only_set_extras(self) -> None:
        """to_dict should emit camelCase keys for populated extras only."""
        from telo_auth.errors import AuthServiceError, ErrorCode

        error = AuthServiceError(
            "Too many requests", ErrorCode.RATE_LIMIT_EXCEEDED, remaining_seconds=30
        )

        assert error.to_dict() == {
            "message": "Too many requests",
            "code": "RATE_LIMIT_EXCEEDED",
            "remainingSeconds": 30,
        }
        assert error.rate_limited is True

    def test_from_transport_without_response_is_network_error(self) -> None:
        """A request that never got a response should report NETWORK_ERROR."""
        from telo_auth.errors import AuthServiceError, ErrorCode, TransportError

        error = AuthServiceError.from_transport(
            TransportError("connection refused"), "Login failed", ErrorCode.LOGIN_ERROR
        )

        assert error.message == "Login failed"
        assert error.code == "NETWORK_ERROR"
