"""Tests for the HTTP API (in-process ASGI client, no network)."""
import asyncio
import json

import httpx
import pytest

from api.server import create_app
from core.config import ConfigManager, TimingConfig
from core.machine import AssistantStateMachine
from core.session import CopilotSession
from core.state import AnalysisResult
from llm.base import LLMError


class FakeRouter:
    def __init__(self, text="Whole oats and fresh honey.", error=None):
        self.text = text
        self.error = error
        self.calls = []

    async def explain(self, ingredients):
        self.calls.append(ingredients)
        if self.error is not None:
            raise self.error
        return self.text


class FakeAnalysis:
    def __init__(self, result):
        self.result = result

    async def analyze(self, ingredients):
        return self.result


@pytest.fixture
def config_manager(tmp_path, monkeypatch):
    monkeypatch.delenv("ELEVENLABS_API_KEY", raising=False)
    return ConfigManager(tmp_path)


def client_for(app):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


class TestAnalyzeRoute:
    @pytest.mark.asyncio
    async def test_confident_answer(self, config_manager):
        router = FakeRouter()
        app = create_app(config_manager, llm_router=router)
        async with client_for(app) as client:
            resp = await client.post("/api/analyze", json={"ingredients": "oats, honey"})

        assert resp.status_code == 200
        assert resp.json() == {
            "text": "Whole oats and fresh honey.",
            "confidence": 1.0,
            "isUncertain": False,
        }
        assert router.calls == ["oats, honey"]

    @pytest.mark.asyncio
    async def test_hedging_answer_is_uncertain(self, config_manager):
        router = FakeRouter(text="Maybe a sauce, possibly jam, hard to tell.")
        app = create_app(config_manager, llm_router=router)
        async with client_for(app) as client:
            body = (await client.post("/api/analyze", json={"ingredients": "x"})).json()
        assert body["isUncertain"] is True
        assert body["confidence"] < 0.7

    @pytest.mark.asyncio
    async def test_provider_failure(self, config_manager):
        app = create_app(config_manager, llm_router=FakeRouter(error=LLMError("down")))
        async with client_for(app) as client:
            resp = await client.post("/api/analyze", json={"ingredients": "x"})
        assert resp.status_code == 502

    @pytest.mark.asyncio
    async def test_missing_ingredients(self, config_manager):
        app = create_app(config_manager, llm_router=FakeRouter())
        async with client_for(app) as client:
            resp = await client.post("/api/analyze", json={})
        assert resp.status_code == 422


class TestSpeakRoute:
    @pytest.mark.asyncio
    async def test_missing_key_asks_for_local_voice(self, config_manager):
        app = create_app(config_manager, llm_router=FakeRouter())
        async with client_for(app) as client:
            resp = await client.post("/api/speak", json={"text": "hello"})
        assert resp.status_code == 401
        assert resp.json()["useBrowserTTS"] is True

    @pytest.mark.asyncio
    async def test_success_returns_mpeg(self, config_manager):
        config_manager.update_nested("api_keys", elevenlabs="xi-test")
        upstream = []

        def handler(request):
            upstream.append(request)
            return httpx.Response(200, content=b"ID3-mp3", headers={"content-type": "audio/mpeg"})

        app = create_app(
            config_manager, llm_router=FakeRouter(), http_transport=httpx.MockTransport(handler)
        )
        async with client_for(app) as client:
            resp = await client.post("/api/speak", json={"text": "hello"})

        assert resp.status_code == 200
        assert resp.headers["content-type"] == "audio/mpeg"
        assert resp.content == b"ID3-mp3"

        sent = upstream[0]
        assert sent.headers["xi-api-key"] == "xi-test"
        assert sent.url.path.endswith("/ocZQ262SsZb9RIxcQBOj")
        payload = json.loads(sent.content)
        assert payload["text"] == "hello"
        assert payload["voice_settings"]["stability"] == 0.3

    @pytest.mark.asyncio
    async def test_upstream_forbidden_asks_for_local_voice(self, config_manager):
        config_manager.update_nested("api_keys", elevenlabs="xi-test")
        transport = httpx.MockTransport(lambda request: httpx.Response(403, text="forbidden"))
        app = create_app(config_manager, llm_router=FakeRouter(), http_transport=transport)
        async with client_for(app) as client:
            resp = await client.post("/api/speak", json={"text": "hello"})
        assert resp.status_code == 403
        assert resp.json()["useBrowserTTS"] is True

    @pytest.mark.asyncio
    async def test_upstream_error(self, config_manager):
        config_manager.update_nested("api_keys", elevenlabs="xi-test")
        transport = httpx.MockTransport(lambda request: httpx.Response(500, text="oops"))
        app = create_app(config_manager, llm_router=FakeRouter(), http_transport=transport)
        async with client_for(app) as client:
            resp = await client.post("/api/speak", json={"text": "hello"})
        assert resp.status_code == 502
        assert "useBrowserTTS" not in resp.json()

    @pytest.mark.asyncio
    async def test_env_key_is_used(self, config_manager, monkeypatch):
        monkeypatch.setenv("ELEVENLABS_API_KEY", "xi-env")
        keys = []

        def handler(request):
            keys.append(request.headers["xi-api-key"])
            return httpx.Response(200, content=b"ID3", headers={"content-type": "audio/mpeg"})

        app = create_app(
            config_manager, llm_router=FakeRouter(), http_transport=httpx.MockTransport(handler)
        )
        async with client_for(app) as client:
            await client.post("/api/speak", json={"text": "hi"})
        assert keys == ["xi-env"]


class TestImageRoute:
    @pytest.mark.asyncio
    async def test_image_upload(self, config_manager):
        app = create_app(config_manager, llm_router=FakeRouter())
        async with client_for(app) as client:
            resp = await client.post(
                "/api/process-image",
                files={"image": ("label.png", b"\x89PNG\r\n", "image/png")},
            )
        assert resp.status_code == 200
        body = resp.json()
        assert body["labels"]
        assert body["filename"] == "label.png"
        assert body["size"] == 6
        assert body["type"] == "image/png"

    @pytest.mark.asyncio
    async def test_rejects_non_image(self, config_manager):
        app = create_app(config_manager, llm_router=FakeRouter())
        async with client_for(app) as client:
            resp = await client.post(
                "/api/process-image",
                files={"image": ("notes.txt", b"hello", "text/plain")},
            )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "File must be an image"

    @pytest.mark.asyncio
    async def test_rejects_large_image(self, config_manager):
        app = create_app(config_manager, llm_router=FakeRouter())
        big = b"\0" * (10 * 1024 * 1024 + 1)
        async with client_for(app) as client:
            resp = await client.post(
                "/api/process-image",
                files={"image": ("big.jpg", big, "image/jpeg")},
            )
        assert resp.status_code == 400


class TestSessionRoutes:
    @pytest.fixture
    def session(self):
        machine = AssistantStateMachine(timing=TimingConfig(speaking_fallback=0.1, laugh=0.1))
        result = AnalysisResult("Organic oats and fresh honey.", confidence=0.95)
        s = CopilotSession(machine, FakeAnalysis(result))
        yield s
        machine.close()

    @pytest.mark.asyncio
    async def test_no_session(self, config_manager):
        app = create_app(config_manager, llm_router=FakeRouter())
        async with client_for(app) as client:
            resp = await client.get("/api/session")
        assert resp.status_code == 503

    @pytest.mark.asyncio
    async def test_initial_view(self, config_manager, session):
        app = create_app(config_manager, session=session, llm_router=FakeRouter())
        async with client_for(app) as client:
            body = (await client.get("/api/session")).json()
        assert body["state"] == "idle"
        assert body["error"] is None
        assert body["result"] is None
        assert body["mascot"]["animation"] == "/copilot/idle.gif"

    @pytest.mark.asyncio
    async def test_empty_submit_warns(self, config_manager, session):
        app = create_app(config_manager, session=session, llm_router=FakeRouter())
        async with client_for(app) as client:
            body = (await client.post("/api/session/submit", json={"text": "  "})).json()
        assert body["state"] == "warning"
        assert body["error"] == "Please enter ingredients to analyze"
        assert body["mascot"]["status"] == body["error"]

    @pytest.mark.asyncio
    async def test_submit_then_answer(self, config_manager, session):
        app = create_app(config_manager, session=session, llm_router=FakeRouter())
        async with client_for(app) as client:
            body = (await client.post("/api/session/submit", json={"text": "oats"})).json()
            assert body["state"] == "thinking"
            assert body["input"] == "oats"

            await asyncio.sleep(0.02)
            body = (await client.get("/api/session")).json()
            assert body["state"] == "speaking"
            assert body["mood"] == "positive"
            assert body["result"]["confidence"] == 0.95
            assert body["mascot"]["tint"] == "green"

            body = (await client.post("/api/session/speech/stop")).json()
            assert body["state"] == "idle"

    @pytest.mark.asyncio
    async def test_submit_uses_current_input(self, config_manager, session):
        app = create_app(config_manager, session=session, llm_router=FakeRouter())
        async with client_for(app) as client:
            await client.put("/api/session/input", json={"text": "milk"})
            body = (await client.post("/api/session/submit", json={})).json()
        assert body["state"] == "thinking"
        assert body["input"] == "milk"

    @pytest.mark.asyncio
    async def test_mascot_click(self, config_manager, session):
        app = create_app(config_manager, session=session, llm_router=FakeRouter())
        async with client_for(app) as client:
            body = (await client.post("/api/session/mascot/click")).json()
            assert body["state"] == "laugh"
            assert body["mascot"]["animation"] == "/copilot/laugh.gif"

            await asyncio.sleep(0.15)
            body = (await client.get("/api/session")).json()
            assert body["state"] == "idle"

    @pytest.mark.asyncio
    async def test_dictation_without_microphone(self, config_manager, session):
        app = create_app(config_manager, session=session, llm_router=FakeRouter())
        async with client_for(app) as client:
            body = (await client.post("/api/session/dictation/start")).json()
            assert body["state"] == "idle"
            assert body["voice_input_supported"] is False
            body = (await client.post("/api/session/dictation/stop")).json()
            assert body["state"] == "idle"

    @pytest.mark.asyncio
    async def test_health(self, config_manager, session):
        app = create_app(config_manager, session=session, llm_router=FakeRouter())
        async with client_for(app) as client:
            body = (await client.get("/api/health")).json()
        assert body == {"status": "ok", "provider": "gemini", "assistant_state": "idle"}
