"""Tests for the provider credential routes.

Tests cover:
- Listing every catalog provider with fingerprints only
- Storing keys with and without provider validation
- Local providers without a key
- Input validation errors
- Removing keys
"""

import respx
from fastapi.testclient import TestClient
from httpx import Response


def keys_by_provider(response) -> dict[str, dict]:
    return {entry["provider"]: entry for entry in response.json()["data"]}


class TestListKeys:
    def test_every_provider_listed_unconfigured(self, client: TestClient):
        response = client.get("/keys")

        assert response.status_code == 200
        providers = [entry["provider"] for entry in response.json()["data"]]
        assert providers == ["openai", "anthropic", "gemini", "deepgram", "ollama", "whisper"]
        assert not any(entry["configured"] for entry in response.json()["data"])


class TestSetKey:
    def test_without_validation(self, client: TestClient):
        response = client.post(
            "/keys", json={"provider": "openai", "api_key": "sk-test-9876", "validate": False}
        )

        assert response.status_code == 200
        openai = keys_by_provider(response)["openai"]
        assert openai["configured"] is True
        assert openai["key_fingerprint"] == "9876"
        assert "sk-test-9876" not in response.text

    @respx.mock
    def test_validated_key_stored(self, client: TestClient):
        route = respx.get("https://api.anthropic.com/v1/models").mock(
            return_value=Response(200, json={"data": []})
        )

        response = client.post("/keys", json={"provider": "anthropic", "api_key": "sk-ant-1234"})

        assert route.called
        assert route.calls.last.request.headers["x-api-key"] == "sk-ant-1234"
        assert keys_by_provider(response)["anthropic"]["configured"] is True

    @respx.mock
    def test_rejected_key_not_stored(self, client: TestClient):
        respx.get("https://api.openai.com/v1/models").mock(return_value=Response(401))

        response = client.post("/keys", json={"provider": "openai", "api_key": "sk-bad"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_KEY_REJECTED"
        assert response.json()["error"]["message"] == "Invalid API key."
        assert keys_by_provider(client.get("/keys"))["openai"]["configured"] is False

    def test_local_provider_without_key(self, client: TestClient):
        response = client.post("/keys", json={"provider": "whisper", "validate": False})

        whisper = keys_by_provider(response)["whisper"]
        assert whisper["configured"] is True
        assert whisper["key_fingerprint"] == "local"
        assert whisper["is_local"] is True

    def test_empty_key(self, client: TestClient):
        response = client.post("/keys", json={"provider": "openai", "api_key": "   ", "validate": False})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_KEY_INVALID_FORMAT"

    def test_unknown_provider(self, client: TestClient):
        for validate in (True, False):
            response = client.post(
                "/keys", json={"provider": "mystery", "api_key": "k", "validate": validate}
            )
            assert response.status_code == 400
            assert response.json()["error"]["code"] == "E_PROVIDER_INVALID"

    def test_missing_provider_field(self, client: TestClient):
        response = client.post("/keys", json={"api_key": "k"})
        assert response.status_code == 400


class TestRemoveKey:
    def test_remove(self, client: TestClient):
        client.post("/keys", json={"provider": "openai", "api_key": "sk-1", "validate": False})

        response = client.delete("/keys/openai")

        assert response.status_code == 200
        assert keys_by_provider(response)["openai"]["configured"] is False

    def test_remove_missing(self, client: TestClient):
        response = client.delete("/keys/openai")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_NOT_FOUND"

    def test_remove_unknown_provider(self, client: TestClient):
        response = client.delete("/keys/mystery")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_PROVIDER_INVALID"
