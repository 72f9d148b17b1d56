"""
test_distributor.py — Tests for Slack webhook delivery and channel digests.
"""

import sys
from pathlib import Path
from types import SimpleNamespace

import pytest
import requests

sys.path.insert(0, str(Path(__file__).parent.parent))

from campaign_analytics import distributor
from campaign_analytics.config import DEFAULT_CONFIG
from campaign_analytics.distributor import (
    SlackClient,
    SlackError,
    build_slack_payload,
    build_transcript,
    filter_messages,
    is_thread_parent,
    seconds_from_window,
    send_slack_summary,
    summarize_channel,
)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeResponse:
    def __init__(self, payload, status=200):
        self._payload = payload
        self.status_code = status

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(str(self.status_code))


class FakeSlackSession:
    """Answers Slack Web API GETs from a method → handler table."""

    def __init__(self, routes):
        self.routes = routes
        self.headers = {}
        self.calls = []

    def get(self, url, params=None, timeout=None):
        method = url.rsplit("/", 1)[-1]
        self.calls.append((method, dict(params or {})))
        return FakeResponse(self.routes[method](params or {}))


class FakeLLM:
    def __init__(self, text="1) Shipped the tub report"):
        self.text = text
        self.requests = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.requests.append(kwargs)
        message = SimpleNamespace(content=self.text)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


HISTORY = [
    {"ts": "300.0", "user": "U2", "text": "late update"},
    {"ts": "100.0", "user": "U1", "text": "kickoff", "thread_ts": "100.0", "reply_count": 1},
    {"ts": "200.0", "subtype": "channel_join", "text": "joined"},
]
REPLIES = [
    {"ts": "100.0", "user": "U1", "text": "kickoff"},
    {"ts": "150.0", "user": "U2", "text": "tubs report is live"},
]
USERS = {
    "U1": {"name": "ana", "profile": {"display_name": "Ana"}},
    "U2": {"name": "ben", "profile": {"display_name": "", "real_name": "Ben B"}},
}


def slack_routes():
    return {
        "conversations.list": lambda p: {
            "ok": True,
            "channels": [{"id": "C1", "name": "marketing"}],
            "response_metadata": {"next_cursor": ""},
        },
        "conversations.info": lambda p: {"ok": True, "channel": {"name": "marketing"}},
        "conversations.history": lambda p: {"ok": True, "messages": HISTORY},
        "conversations.replies": lambda p: {"ok": True, "messages": REPLIES},
        "users.info": lambda p: {"ok": True, "user": USERS[p["user"]]},
    }


# ---------------------------------------------------------------------------
# Webhook summary
# ---------------------------------------------------------------------------

class TestWebhook:

    def test_payload_blocks(self):
        payload = build_slack_payload("Top Slugs", ["*1.* health/tubs/"], DEFAULT_CONFIG)
        assert payload["username"] == DEFAULT_CONFIG["distribution"]["slack_username"]
        assert [b["type"] for b in payload["blocks"]] == ["header", "divider", "section", "divider", "context"]
        assert payload["blocks"][2]["text"]["text"] == "*1.* health/tubs/"

    def test_empty_lines(self):
        payload = build_slack_payload("x", [], DEFAULT_CONFIG)
        assert payload["blocks"][2]["text"]["text"] == "_No data_"

    def test_dry_run_without_url(self, monkeypatch):
        def boom(*a, **k):
            raise AssertionError("must not post")
        monkeypatch.setattr(distributor.requests, "post", boom)
        assert send_slack_summary("x", ["a"], DEFAULT_CONFIG, env={}) is True

    def test_retries_then_fails(self, monkeypatch):
        statuses = []
        sleeps = []

        def fake_post(url, json=None, timeout=None):
            statuses.append(url)
            return FakeResponse({}, status=500)

        monkeypatch.setattr(distributor.requests, "post", fake_post)
        monkeypatch.setattr(distributor.time, "sleep", sleeps.append)
        ok = send_slack_summary("x", ["a"], DEFAULT_CONFIG, env={"SLACK_WEBHOOK_URL": "https://hooks.example/x"})
        assert ok is False
        assert len(statuses) == 3
        assert sleeps == [2, 4]

    def test_success_after_network_error(self, monkeypatch):
        responses = [requests.ConnectionError("down"), FakeResponse({}, status=200)]

        def fake_post(url, json=None, timeout=None):
            r = responses.pop(0)
            if isinstance(r, Exception):
                raise r
            return r

        monkeypatch.setattr(distributor.requests, "post", fake_post)
        monkeypatch.setattr(distributor.time, "sleep", lambda s: None)
        assert send_slack_summary("x", ["a"], DEFAULT_CONFIG, env={"SLACK_WEBHOOK_URL": "https://h"}) is True


# ---------------------------------------------------------------------------
# Web API client
# ---------------------------------------------------------------------------

class TestSlackClient:

    def test_token_required(self):
        with pytest.raises(ValueError):
            SlackClient("")

    def test_auth_header(self):
        session = FakeSlackSession(slack_routes())
        SlackClient("xoxb-1", session=session)
        assert session.headers["Authorization"] == "Bearer xoxb-1"

    def test_error_response(self):
        session = FakeSlackSession({"conversations.info": lambda p: {"ok": False, "error": "not_in_channel"}})
        with pytest.raises(SlackError, match=r"Slack error \(conversations.info\): not_in_channel"):
            SlackClient("t", session=session).channel_name("C1")

    def test_pagination_follows_cursor(self):
        pages = {
            None: {"ok": True, "channels": [{"id": "C1", "name": "a"}],
                   "response_metadata": {"next_cursor": "p2"}},
            "p2": {"ok": True, "channels": [{"id": "C2", "name": "b"}]},
        }
        session = FakeSlackSession({"conversations.list": lambda p: pages[p.get("cursor")]})
        client = SlackClient("t", session=session)
        assert client.resolve_channel_id("#b") == "C2"
        assert len(session.calls) == 2

    def test_channel_id_passthrough_and_unknown_name(self):
        client = SlackClient("t", session=FakeSlackSession(slack_routes()))
        assert client.resolve_channel_id("C0123ABC") == "C0123ABC"
        with pytest.raises(SlackError, match="Channel not found"):
            client.resolve_channel_id("#nope")

    def test_messages_sorted_without_subtypes(self):
        client = SlackClient("t", session=FakeSlackSession(slack_routes()))
        messages = client.fetch_messages("C1", 0, 1000)
        assert [m["ts"] for m in messages] == ["100.0", "300.0"]

    def test_user_names_fall_back(self):
        routes = slack_routes()
        routes["users.info"] = lambda p: (
            {"ok": True, "user": USERS[p["user"]]} if p["user"] in USERS else {"ok": False, "error": "user_not_found"}
        )
        client = SlackClient("t", session=FakeSlackSession(routes))
        assert client.user_names(["U1", "U2", "U9", None, "U1"]) == {"U1": "Ana", "U2": "Ben B", "U9": "U9"}


# ---------------------------------------------------------------------------
# Digest
# ---------------------------------------------------------------------------

class TestDigestHelpers:

    @pytest.mark.parametrize("window,expected", [
        ("2d", 172800), ("6h", 21600), ("30m", 1800), ("3D", 259200), ("", 172800), ("week", 172800),
    ])
    def test_seconds_from_window(self, window, expected):
        assert seconds_from_window(window) == expected

    def test_thread_parent(self):
        assert is_thread_parent({"ts": "1", "thread_ts": "1", "reply_count": 2})
        assert not is_thread_parent({"ts": "2", "thread_ts": "1", "reply_count": 0})
        assert not is_thread_parent({"ts": "3"})

    def test_transcript(self):
        messages = [{"ts": "1", "user": "U1", "text": "kickoff"}, {"ts": "2", "text": "bot note"}]
        threads = {"1": [{"ts": "1", "user": "U1", "text": "kickoff"}, {"ts": "1.5", "user": "U2", "text": "ok"}]}
        out = build_transcript(messages, threads, {"U1": "Ana"})
        assert out.splitlines() == ["- Ana: kickoff", "  • U2: ok", "- user: bot note"]

    def test_filter_matches_replies(self):
        messages = [{"ts": "1", "text": "kickoff"}, {"ts": "2", "text": "lunch"}]
        threads = {"1": [{"ts": "1.1", "text": "Tubs revenue up"}]}
        assert filter_messages(messages, threads, "tubs") == [messages[0]]
        assert filter_messages(messages, threads, "") == messages


class TestSummarizeChannel:

    def test_digest(self):
        session = FakeSlackSession(slack_routes())
        llm = FakeLLM()
        digest = summarize_channel(SlackClient("t", session=session), llm, "#marketing", "1d", now=1000)

        assert digest.channel_name == "marketing"
        assert digest.message_count == 2
        assert digest.summary == "1) Shipped the tub report"
        assert digest.transcript.splitlines() == [
            "- Ana: kickoff",
            "  • Ben B: tubs report is live",
            "- Ben B: late update",
        ]
        history_params = next(p for m, p in session.calls if m == "conversations.history")
        assert history_params["oldest"] == str(1000 - 86400)
        assert history_params["latest"] == "1000"
        assert llm.requests[0]["temperature"] == 0.2
        assert "#marketing" in llm.requests[0]["messages"][1]["content"]

    def test_no_matching_messages_skips_llm(self):
        llm = FakeLLM()
        digest = summarize_channel(SlackClient("t", session=FakeSlackSession(slack_routes())),
                                   llm, "C1", query="nothing matches this")
        assert digest.message_count == 0
        assert digest.summary == ""
        assert llm.requests == []
