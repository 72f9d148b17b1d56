"""
distributor.py — Slack delivery and channel digests.

Two Slack integrations:
    1. Incoming webhook — posts a report summary as Block Kit blocks.
       Dry-run mode when SLACK_WEBHOOK_URL is absent: the payload is
       logged rather than sent.
    2. Web API (bot token) — reads a channel's recent messages and
       threads, then asks an OpenAI model for an executive digest.

Credentials are read exclusively from the environment (.env file).
No credentials in config.yaml.
"""

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Optional

import requests
from openai import OpenAI

logger = logging.getLogger(__name__)

SLACK_API = "https://slack.com/api"
DEFAULT_WINDOW_SECONDS = 2 * 24 * 60 * 60

DIGEST_SYSTEM_PROMPT = "You write crisp, high-signal executive summaries."
DIGEST_USER_PROMPT = (
    "Summarize the recent updates from #{channel}. Return:\n"
    "1) Key developments\n2) Decisions/risks\n3) Shipped/accomplishments\n4) Next focus\n\n"
    "Messages:\n{transcript}"
)


# ---------------------------------------------------------------------------
# Webhook summary
# ---------------------------------------------------------------------------

def build_slack_payload(title: str, lines: Iterable[str], cfg: dict[str, Any]) -> dict[str, Any]:
    """Block Kit payload: header, one mrkdwn section, context footer.

    Args:
        title: Header text.
        lines: Summary lines (mrkdwn).
        cfg: Full configuration dict.
    """
    dist_cfg = cfg["distribution"]
    blocks = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f":bar_chart: {title}", "emoji": True},
        },
        {"type": "divider"},
        {"type": "section", "text": {"type": "mrkdwn", "text": "\n".join(lines) or "_No data_"}},
        {"type": "divider"},
        {
            "type": "context",
            "elements": [{
                "type": "mrkdwn",
                "text": f":information_source: Campaign Analytics | Channel: {dist_cfg['slack_channel']}",
            }],
        },
    ]
    return {
        "username": dist_cfg["slack_username"],
        "icon_emoji": dist_cfg["slack_icon_emoji"],
        "channel": dist_cfg["slack_channel"],
        "blocks": blocks,
    }


def send_slack_summary(
    title: str,
    lines: Iterable[str],
    cfg: dict[str, Any],
    env: Optional[dict[str, str]] = None,
) -> bool:
    """Post a report summary to the Slack webhook.

    Returns:
        True if sent (or dry-run), False on failure.
    """
    webhook_url = (env or {}).get("SLACK_WEBHOOK_URL", "").strip()
    payload = build_slack_payload(title, list(lines), cfg)

    if not webhook_url:
        logger.warning(
            "SLACK_WEBHOOK_URL not set — Slack dry-run mode.\n%s",
            json.dumps(payload, indent=2),
        )
        return True

    for attempt in range(1, 4):
        try:
            resp = requests.post(webhook_url, json=payload, timeout=10)
            if resp.status_code == 200:
                logger.info("Slack summary sent (attempt %d)", attempt)
                return True
            logger.warning("Slack returned %s (attempt %d)", resp.status_code, attempt)
        except requests.RequestException as exc:
            logger.warning("Slack request failed (attempt %d): %s", attempt, exc)
        if attempt < 3:
            time.sleep(2 ** attempt)

    logger.error("Slack delivery failed after 3 attempts")
    return False


# ---------------------------------------------------------------------------
# Web API client
# ---------------------------------------------------------------------------

class SlackError(RuntimeError):
    """Slack answered with ``ok: false`` or a channel could not be found."""


class SlackClient:
    """Minimal Slack Web API client (bot token, GET methods only)."""

    def __init__(self, token: str, session: Optional[requests.Session] = None, timeout: float = 30):
        if not token:
            raise ValueError("Slack bot token is required")
        self.session = session or requests.Session()
        self.session.headers["Authorization"] = f"Bearer {token}"
        self.timeout = timeout

    def call(self, method: str, **params: Any) -> dict:
        params = {k: v for k, v in params.items() if v is not None}
        resp = self.session.get(f"{SLACK_API}/{method}", params=params, timeout=self.timeout)
        resp.raise_for_status()
        data = resp.json()
        if not data.get("ok"):
            raise SlackError(f"Slack error ({method}): {data.get('error')}")
        return data

    def paginate(self, method: str, key: str, **params: Any) -> Iterator[dict]:
        """Yield items under ``key`` across cursor-paginated pages."""
        cursor = None
        while True:
            data = self.call(method, cursor=cursor, **params)
            yield from data.get(key) or []
            cursor = (data.get("response_metadata") or {}).get("next_cursor") or None
            if not cursor:
                break

    def resolve_channel_id(self, channel: str) -> str:
        """Channel ID for an ID or a (#)name."""
        if re.fullmatch(r"[CGD][A-Z0-9]+", channel):
            return channel
        name = channel.lstrip("#")
        for ch in self.paginate("conversations.list", "channels",
                                limit=200, types="public_channel,private_channel"):
            if ch.get("name") == name:
                return ch["id"]
        raise SlackError(f"Channel not found by name: {channel}")

    def channel_name(self, channel_id: str) -> str:
        data = self.call("conversations.info", channel=channel_id)
        return (data.get("channel") or {}).get("name") or channel_id

    def fetch_messages(self, channel_id: str, oldest: float, latest: float) -> list[dict]:
        """Plain user messages (no subtype) in [oldest, latest], oldest first."""
        messages = self.paginate("conversations.history", "messages", channel=channel_id,
                                 oldest=str(oldest), latest=str(latest), inclusive="true", limit=1000)
        return _plain_sorted(messages)

    def fetch_replies(self, channel_id: str, thread_ts: str) -> list[dict]:
        """Thread messages (parent included), oldest first."""
        replies = self.paginate("conversations.replies", "messages",
                                channel=channel_id, ts=thread_ts, limit=200)
        return _plain_sorted(replies)

    def user_names(self, user_ids: Iterable[str]) -> dict[str, str]:
        """Display names for user IDs; lookups that fail map to the raw ID."""
        names: dict[str, str] = {}
        for user in dict.fromkeys(u for u in user_ids if u):
            try:
                info = self.call("users.info", user=user)["user"]
            except (requests.RequestException, SlackError) as exc:
                logger.debug("users.info failed for %s: %s", user, exc)
                names[user] = user
                continue
            profile = info.get("profile") or {}
            names[user] = profile.get("display_name") or profile.get("real_name") or info.get("name") or user
        return names


def _plain_sorted(messages: Iterable[dict]) -> list[dict]:
    return sorted((m for m in messages if not m.get("subtype")), key=lambda m: float(m["ts"]))


# ---------------------------------------------------------------------------
# Digest
# ---------------------------------------------------------------------------

def seconds_from_window(window: str) -> int:
    """'2d' / '6h' / '30m' → seconds. Anything else means two days."""
    match = re.fullmatch(r"(\d+)([dhm])", (window or "").strip(), re.IGNORECASE)
    if not match:
        return DEFAULT_WINDOW_SECONDS
    value, unit = int(match.group(1)), match.group(2).lower()
    return value * {"d": 86400, "h": 3600, "m": 60}[unit]


def is_thread_parent(message: dict) -> bool:
    return message.get("thread_ts") == message.get("ts") and (message.get("reply_count") or 0) > 0


def build_transcript(messages: list[dict], threads: dict[str, list[dict]], names: dict[str, str]) -> str:
    """Plain-text transcript: '- author: text' with indented thread replies."""

    def _author(m: dict) -> str:
        user = m.get("user")
        return (names.get(user) if user else None) or user or "user"

    lines = []
    for m in messages:
        lines.append(f"- {_author(m)}: {m.get('text') or ''}")
        replies = threads.get(m["ts"]) or []
        if replies and replies[0].get("ts") == m["ts"]:
            replies = replies[1:]
        for r in replies:
            lines.append(f"  • {_author(r)}: {r.get('text') or ''}")
    return "\n".join(lines)


def filter_messages(messages: list[dict], threads: dict[str, list[dict]], query: str) -> list[dict]:
    """Keep messages whose text, or any reply's text, contains ``query``."""
    if not query:
        return messages
    q = query.lower()

    def _matches(m: dict) -> bool:
        if q in (m.get("text") or "").lower():
            return True
        return any(q in (r.get("text") or "").lower() for r in threads.get(m["ts"]) or [])

    return [m for m in messages if _matches(m)]


@dataclass
class ChannelDigest:
    channel_name: str
    window: str
    query: str = ""
    message_count: int = 0
    summary: str = ""
    transcript: str = field(default="", repr=False)


def summarize_channel(
    slack: SlackClient,
    llm: OpenAI,
    channel: str,
    window: str = "2d",
    query: str = "",
    model: str = "gpt-4o-mini",
    now: Optional[float] = None,
) -> ChannelDigest:
    """Fetch a channel's recent messages and summarize them.

    Returns:
        ChannelDigest; ``summary`` is empty when no messages matched.
    """
    latest = int(now if now is not None else time.time())
    oldest = latest - seconds_from_window(window)

    channel_id = slack.resolve_channel_id(channel)
    name = slack.channel_name(channel_id)
    messages = slack.fetch_messages(channel_id, oldest, latest)
    threads = {m["ts"]: slack.fetch_replies(channel_id, m["ts"]) for m in messages if is_thread_parent(m)}
    messages = filter_messages(messages, threads, query)
    logger.info("#%s: %d messages in the last %s", name, len(messages), window)

    digest = ChannelDigest(channel_name=name, window=window, query=query, message_count=len(messages))
    if not messages:
        return digest

    user_ids = [m.get("user") for m in messages]
    user_ids += [r.get("user") for m in messages for r in threads.get(m["ts"]) or []]
    digest.transcript = build_transcript(messages, threads, slack.user_names(user_ids))

    response = llm.chat.completions.create(
        model=model,
        temperature=0.2,
        messages=[
            {"role": "system", "content": DIGEST_SYSTEM_PROMPT},
            {"role": "user", "content": DIGEST_USER_PROMPT.format(channel=name, transcript=digest.transcript)},
        ],
    )
    digest.summary = (response.choices[0].message.content or "").strip() if response.choices else ""
    return digest
