"""
test_analytics_chat.py — Tests for the analytics chat route and its HTTP server.

The backend and the LLM gateway are replaced with in-memory fakes; the
server test binds to an ephemeral localhost port.
"""

import importlib
import json
import logging
import sys
import threading
from pathlib import Path
from types import SimpleNamespace

import pytest
import requests

sys.path.insert(0, str(Path(__file__).parent.parent))

from campaign_analytics.analytics_chat import (
    AnalyticsChatHandler,
    MessageStore,
    error_chunk,
    extract_query_text,
    wrap_content,
)
import chat_server
from chat_server import build_server

ROWS = [{"campaign_name": "Tubs", "revenue_usd": 250.0}]


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeResponse:
    def __init__(self, status=200, payload=None, reason="OK"):
        self.status_code = status
        self.ok = status < 400
        self.reason = reason
        self._payload = payload or {}

    def json(self):
        return self._payload

    def raise_for_status(self):
        if not self.ok:
            raise requests.HTTPError(f"{self.status_code} {self.reason}")


class FakeSession:
    def __init__(self, intent_response, context_response=None):
        self.intent_response = intent_response
        self.context_response = context_response or FakeResponse()
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.calls.append((url, json))
        if url.endswith("/intent"):
            return self.intent_response
        return self.context_response


class FakeLLM:
    """OpenAI-shaped client whose stream yields the given deltas."""

    def __init__(self, deltas=("Revenue ", "is up."), error=None):
        self.deltas = deltas
        self.error = error
        self.requests = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error:
            raise self.error
        return [
            SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=d))])
            for d in self.deltas
        ]


def unwrap(chunk: str) -> dict:
    assert chunk.startswith('<content thesys="true">') and chunk.endswith("</content>")
    return json.loads(chunk[len('<content thesys="true">'):-len("</content>")])


def make_handler(session=None, llm=None, store=None):
    session = session or FakeSession(FakeResponse(payload={
        "intent": {"type": "query", "visualization": "table", "dataSource": "campaigns"},
        "data": {"rows": ROWS},
    }))
    return AnalyticsChatHandler(
        backend_url="http://backend:8080/",
        llm_client=llm or FakeLLM(),
        model="test-model",
        session=session,
        store=store,
    )


# ---------------------------------------------------------------------------
# Prompt parsing
# ---------------------------------------------------------------------------

class TestExtractQueryText:

    def test_string_content(self):
        assert extract_query_text({"content": "revenue by lane"}) == "revenue by lane"

    def test_content_tag_stripped(self):
        assert extract_query_text({"content": "<content> top campaigns </content>"}) == "top campaigns"

    def test_parts_joined(self):
        prompt = {"content": ["show", {"text": "spend"}, {"type": "image"}]}
        assert extract_query_text(prompt) == "show spend "

    @pytest.mark.parametrize("prompt,message", [
        (None, "prompt is required"),
        ({}, "prompt is required"),
        ({"content": "   "}, "prompt.content is empty or invalid"),
        ({"content": 42}, "prompt.content is empty or invalid"),
    ])
    def test_invalid(self, prompt, message):
        with pytest.raises(ValueError, match=message):
            extract_query_text(prompt)


class TestMessageStore:

    def test_history_limit_and_shape(self):
        store = MessageStore()
        for i in range(12):
            store.append("t1", {"role": "user", "content": str(i), "id": i})
        history = store.history("t1", limit=10)
        assert len(history) == 10
        assert history[0] == {"role": "user", "content": "2"}
        assert store.history("other") == []

    def test_thread_is_capped_oldest_first(self):
        store = MessageStore(max_messages=4)
        for i in range(7):
            store.append("t1", {"role": "user", "content": str(i)})
        assert [m["content"] for m in store.thread("t1")] == ["3", "4", "5", "6"]

    def test_thread_returns_copy(self):
        store = MessageStore()
        store.append("t1", {"role": "user", "content": "a"})
        store.thread("t1").append({"role": "user", "content": "b"})
        assert len(store.thread("t1")) == 1
        assert store.thread("missing") == []

    def test_concurrent_appends_stay_bounded(self):
        store = MessageStore(max_messages=20)

        def writer(n):
            for i in range(200):
                store.append("shared", {"role": "user", "content": f"{n}-{i}"})

        workers = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for w in workers:
            w.start()
        for w in workers:
            w.join()
        assert len(store.thread("shared")) == 20

    def test_rejects_non_positive_cap(self):
        with pytest.raises(ValueError):
            MessageStore(max_messages=0)

    def test_handler_default_store_is_bounded(self):
        handler = make_handler()
        assert handler.store.max_messages == 20
        for i in range(30):
            handler.store.append("t1", {"role": "user", "content": str(i)})
        assert len(handler.store.thread("t1")) == 20


# ---------------------------------------------------------------------------
# Request handling
# ---------------------------------------------------------------------------

class TestHandle:

    def test_stream_order_and_storage(self):
        store = MessageStore()
        llm = FakeLLM()
        handler = make_handler(llm=llm, store=store)
        chunks = list(handler.handle({
            "prompt": {"content": "top campaigns"}, "threadId": "t1", "responseId": "r1",
        }))

        assert len(chunks) == 3
        assert unwrap(chunks[0])["component"]["props"]["textMarkdown"] == "Revenue "
        assert unwrap(chunks[1])["component"]["props"]["textMarkdown"] == "Revenue is up."
        assert unwrap(chunks[2])["component"]["component"] == "Table"

        thread = store.thread("t1")
        assert thread[0] == {"role": "user", "content": "top campaigns"}
        assert thread[1]["role"] == "assistant"
        assert thread[1]["id"] == "r1"
        assert thread[1]["content"].startswith("Revenue is up.\n\n{")

        sent = llm.requests[0]
        assert sent["model"] == "test-model"
        assert sent["stream"] is True
        assert sent["messages"][0]["role"] == "system"
        assert 'The user asked: "top campaigns"' in sent["messages"][0]["content"]
        assert sent["messages"][-1] == {"role": "user", "content": "top campaigns"}

    def test_backend_calls(self):
        handler = make_handler()
        list(handler.handle({"prompt": {"content": "q"}, "threadId": "t9"}))
        urls = [u for u, _ in handler.session.calls]
        assert urls == [
            "http://backend:8080/api/analytics/intent",
            "http://backend:8080/api/analytics/context",
        ]
        intent_body = handler.session.calls[0][1]
        assert intent_body == {"query": "q", "threadId": "t9"}
        context = handler.session.calls[1][1]["message"]
        assert context["metadata"] == {
            "queryType": "query", "visualizationType": "table", "dataSource": "campaigns",
        }

    def test_default_thread(self):
        store = MessageStore()
        handler = make_handler(store=store)
        list(handler.handle({"prompt": {"content": "q"}}))
        assert len(store.thread("default")) == 2

    def test_missing_prompt_is_error_chunk(self):
        chunks = list(make_handler().handle({"threadId": "t1"}))
        assert chunks == [error_chunk("prompt is required")]
        assert "**Error:** prompt is required" in chunks[0]

    def test_intent_failure_is_error_chunk(self):
        session = FakeSession(FakeResponse(status=502, reason="Bad Gateway"))
        chunks = list(make_handler(session=session).handle({"prompt": {"content": "q"}}))
        text = unwrap(chunks[0])["component"]["props"]["textMarkdown"]
        assert text == "**Error:** Intent detection failed: Bad Gateway"

    def test_llm_failure_is_error_chunk(self):
        handler = make_handler(llm=FakeLLM(error=RuntimeError("gateway down")))
        chunks = list(handler.handle({"prompt": {"content": "q"}}))
        assert len(chunks) == 1
        assert "gateway down" in chunks[0]

    def test_context_failure_does_not_break_stream(self):
        session = FakeSession(
            FakeResponse(payload={"intent": {"visualization": "bar"}, "data": ROWS}),
            context_response=FakeResponse(status=500, reason="Server Error"),
        )
        chunks = list(make_handler(session=session).handle({"prompt": {"content": "q"}}))
        assert unwrap(chunks[-1])["component"]["component"] == "BarChart"

    def test_component_failure_becomes_text(self):
        session = FakeSession(FakeResponse(payload={
            "intent": {"visualization": "table"}, "data": {"rows": ["not a dict"]},
        }))
        chunks = list(make_handler(session=session).handle({"prompt": {"content": "q"}}))
        text = unwrap(chunks[-1])["component"]["props"]["textMarkdown"]
        assert text.startswith("**Error generating visualization:**")


# ---------------------------------------------------------------------------
# HTTP server
# ---------------------------------------------------------------------------

@pytest.fixture
def server():
    srv = build_server("127.0.0.1", 0, make_handler())
    thread = threading.Thread(target=srv.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{srv.server_address[1]}"
    srv.shutdown()
    srv.server_close()


class TestChatServer:

    def test_health(self, server):
        resp = requests.get(f"{server}/health", timeout=5)
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    def test_unknown_path(self, server):
        assert requests.get(f"{server}/nope", timeout=5).status_code == 404

    def test_invalid_json(self, server):
        resp = requests.post(f"{server}/api/analytics-chat", data=b"{not json", timeout=5)
        assert resp.status_code == 400

    def test_streamed_chat(self, server):
        resp = requests.post(
            f"{server}/api/analytics-chat",
            json={"prompt": {"content": "top campaigns"}, "threadId": "t1", "responseId": "r1"},
            timeout=5,
        )
        assert resp.status_code == 200
        assert resp.headers["Content-Type"] == "text/event-stream"
        assert resp.headers["Cache-Control"] == "no-cache, no-transform"
        assert resp.text.count('<content thesys="true">') == 3
        last = resp.text[resp.text.rindex('<content thesys="true">'):]
        assert unwrap(last)["component"]["component"] == "Table"
        assert resp.text.endswith(last)


class TestServerLogging:

    def test_import_leaves_logging_alone(self, monkeypatch):
        calls = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kw: calls.append(kw))
        monkeypatch.setattr(logging.getLogger("openai"), "level", logging.NOTSET)
        importlib.reload(chat_server)
        assert calls == []
        assert logging.getLogger("openai").level == logging.NOTSET

    def test_configure_logging_targets_stdout(self, monkeypatch):
        calls = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kw: calls.append(kw))
        for name in ("urllib3", "httpx", "openai"):
            monkeypatch.setattr(logging.getLogger(name), "level", logging.NOTSET)
        monkeypatch.setenv("LOG_LEVEL", "debug")
        chat_server._configure_logging()
        assert calls[0]["level"] == "DEBUG"
        assert calls[0]["stream"] is sys.stdout
        assert logging.getLogger("httpx").level == logging.WARNING
