"""Tests for app wiring: error envelopes, security headers, health check."""

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from tokengate.core.errors import APIError, AuthFlowError
from tokengate.main import api_error_handler, internal_error_handler


def _app_raising(exc: Exception) -> FastAPI:
    app = FastAPI()
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    @app.get("/boom")
    def boom() -> dict:
        raise exc

    return app


class TestErrorEnvelope:
    """Tests for the exception handlers."""

    async def test_api_error_envelope(self):
        app = _app_raising(
            AuthFlowError(
                code="ALREADY_USED",
                message="This link has already been used",
                status_code=409,
                details=[{"attempts_remaining": 0}],
            )
        )
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://t") as c:
            response = await c.get("/boom")

        assert response.status_code == 409
        assert response.json() == {
            "error": {
                "code": "ALREADY_USED",
                "message": "This link has already been used",
                "details": [{"attempts_remaining": 0}],
            }
        }

    async def test_unhandled_exception_hides_details(self):
        app = _app_raising(RuntimeError("database password is hunter2"))
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://t") as c:
            response = await c.get("/boom")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "INTERNAL_ERROR"
        assert "hunter2" not in response.text


class TestAppWiring:
    """Tests for the real application."""

    async def test_health(self, api_client):
        response = await api_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    async def test_security_headers(self, api_client):
        response = await api_client.get("/api/v1/auth/links/" + "f" * 64)

        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["Referrer-Policy"] == "no-referrer"
        assert response.headers["Cache-Control"] == "no-store, max-age=0"
        assert "Strict-Transport-Security" not in response.headers

    async def test_request_validation_error_is_400(self, api_client):
        response = await api_client.post("/api/v1/auth/login", json={"email": "x"})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert all("input" not in detail for detail in error["details"])
