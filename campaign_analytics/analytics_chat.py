"""
analytics_chat.py — Analytics chat route.

Turns one chat request into a stream of generative-UI chunks:

    1. Extract the query text from the prompt
    2. POST {query, threadId} to the backend's intent endpoint
    3. Build a component from the returned intent + data
    4. Stream a short LLM explanation (cumulative TextContent chunks)
    5. Send the component itself
    6. Record the assistant message and push it to the backend context

Every chunk is wrapped as ``<content thesys="true">{json}</content>``.
Failures before streaming starts produce a single ``**Error:** ...`` chunk.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

import requests
from openai import OpenAI

from campaign_analytics.data_formatter import generate_component

logger = logging.getLogger(__name__)

CONTENT_OPEN = '<content thesys="true">'
CONTENT_CLOSE = "</content>"

SYSTEM_PROMPT = """You are an analytical assistant. The user asked: "{query}"

A C1 component has been generated to visualize the data. Provide a brief natural language explanation (1-2 sentences) that introduces the visualization and highlights key insights.

Keep it concise and focused."""


def extract_query_text(prompt: Any) -> str:
    """Return the user's query from a chat prompt.

    ``prompt["content"]`` may be a string or a list of strings and
    ``{"text": ...}`` parts (joined with spaces). A surrounding
    ``<content>...</content>`` tag is stripped.

    Raises:
        ValueError: If the prompt is missing or its content is empty.
    """
    if not prompt:
        raise ValueError("prompt is required")

    content = prompt.get("content") if isinstance(prompt, dict) else None
    if isinstance(content, str):
        text = content
    elif isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict):
                parts.append(part.get("text") or "")
            else:
                parts.append("")
        text = " ".join(parts)
    else:
        text = ""

    if text.startswith("<content>") and text.endswith("</content>"):
        text = text[len("<content>"):-len("</content>")].strip()

    if not text.strip():
        raise ValueError("prompt.content is empty or invalid")
    return text


def wrap_content(component: dict) -> str:
    return f"{CONTENT_OPEN}{json.dumps(component)}{CONTENT_CLOSE}"


def text_component(markdown: str) -> dict:
    return {"component": {"component": "TextContent", "props": {"textMarkdown": markdown}}}


def error_chunk(message: str) -> str:
    return wrap_content(text_component(f"**Error:** {message}"))


class MessageStore:
    """In-memory conversation history, one bounded list per thread.

    Process-local; history is lost on restart. Each thread keeps at most
    ``max_messages`` entries, oldest dropped first. Safe to share across
    server threads.
    """

    def __init__(self, max_messages: int = 50):
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        self.max_messages = max_messages
        self._threads: dict[str, list[dict]] = {}
        self._lock = threading.Lock()

    def thread(self, thread_id: str) -> list[dict]:
        """Copy of a thread's stored messages, oldest first."""
        with self._lock:
            return list(self._threads.get(thread_id, []))

    def append(self, thread_id: str, message: dict) -> None:
        with self._lock:
            messages = self._threads.setdefault(thread_id, [])
            messages.append(message)
            if len(messages) > self.max_messages:
                del messages[: len(messages) - self.max_messages]

    def history(self, thread_id: str, limit: int = 10) -> list[dict]:
        """Last ``limit`` messages as ``{role, content}`` pairs."""
        return [{"role": m["role"], "content": m["content"]} for m in self.thread(thread_id)[-limit:]]


class AnalyticsChatHandler:
    """Handle analytics chat requests.

    Args:
        backend_url: Base URL of the analytics backend (intent + context).
        llm_client: OpenAI-compatible client pointed at the LLM gateway.
        model: Gateway model name.
        session: requests session (injectable for tests).
        store: Message store shared across requests.
        history_messages: How many past messages go to the LLM.
        timeout: Seconds for backend HTTP calls.
    """

    def __init__(
        self,
        backend_url: str,
        llm_client: OpenAI,
        model: str,
        session: Optional[requests.Session] = None,
        store: Optional[MessageStore] = None,
        history_messages: int = 10,
        timeout: float = 30,
    ):
        self.backend_url = backend_url.rstrip("/")
        self.llm = llm_client
        self.model = model
        self.session = session or requests.Session()
        self.store = store or MessageStore(max_messages=max(history_messages * 2, 1))
        self.history_messages = history_messages
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg: dict, api_key: Optional[str], store: Optional[MessageStore] = None):
        chat = cfg["chat"]
        client = OpenAI(base_url=chat["gateway_url"], api_key=api_key)
        return cls(
            backend_url=chat["backend_url"],
            llm_client=client,
            model=chat["model"],
            store=store,
            history_messages=int(chat.get("history_messages", 10)),
            timeout=float(chat.get("intent_timeout_seconds", 30)),
        )

    # ------------------------------------------------------------------
    # Backend calls
    # ------------------------------------------------------------------

    def detect_intent(self, query: str, thread_id: str) -> dict:
        """POST the query to the intent endpoint; returns {intent, data, ...}."""
        resp = self.session.post(
            f"{self.backend_url}/api/analytics/intent",
            json={"query": query, "threadId": thread_id},
            timeout=self.timeout,
        )
        if not resp.ok:
            raise RuntimeError(f"Intent detection failed: {resp.reason}")
        payload = resp.json()
        if not isinstance(payload.get("intent"), dict):
            raise RuntimeError("Intent detection returned no intent")
        return payload

    def push_context(self, thread_id: str, content: str, intent: dict) -> None:
        """Send the assistant message to the backend; failures are only logged."""
        message = {
            "role": "assistant",
            "content": content,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "metadata": {
                "queryType": intent.get("type"),
                "visualizationType": intent.get("visualization"),
                "dataSource": intent.get("dataSource"),
            },
        }
        try:
            resp = self.session.post(
                f"{self.backend_url}/api/analytics/context",
                json={"threadId": thread_id, "message": message},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Context update failed for thread %s: %s", thread_id, exc)

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    def build_component(self, intent: dict, data: Any) -> dict:
        try:
            return generate_component(intent, data)
        except Exception as exc:
            logger.error("Component generation failed: %s", exc, exc_info=True)
            dump = json.dumps(data, indent=2, default=str)
            return text_component(f"**Error generating visualization:** {exc}\n\nData: {dump}")

    def handle(self, body: dict) -> Iterator[str]:
        """Process a request body ``{prompt, threadId, responseId}``.

        Returns:
            Iterator of wrapped chunks. Errors raised before the LLM stream
            opens become a single error chunk; errors while streaming
            propagate to the caller.
        """
        try:
            return self._start(body)
        except Exception as exc:
            logger.error("Analytics chat failed: %s", exc, exc_info=True)
            return iter([error_chunk(str(exc) or "Unknown error")])

    def _start(self, body: dict) -> Iterator[str]:
        query = extract_query_text(body.get("prompt"))
        thread_id = body.get("threadId") or "default"
        response_id = body.get("responseId")
        logger.info("Query on thread %s: %s", thread_id, query)

        result = self.detect_intent(query, thread_id)
        intent, data = result["intent"], result.get("data")
        logger.info("Intent: %s / %s", intent.get("type"), intent.get("visualization"))

        self.store.append(thread_id, {"role": "user", "content": query})
        component = self.build_component(intent, data)

        messages = [{"role": "system", "content": SYSTEM_PROMPT.format(query=query)}]
        messages += self.store.history(thread_id, self.history_messages)
        messages.append({"role": "user", "content": query})
        llm_stream = self.llm.chat.completions.create(model=self.model, messages=messages, stream=True)

        return self._stream(llm_stream, component, intent, thread_id, response_id)

    def _stream(self, llm_stream, component: dict, intent: dict,
                thread_id: str, response_id: Optional[str]) -> Iterator[str]:
        explanation = ""
        for chunk in llm_stream:
            delta = chunk.choices[0].delta.content if chunk.choices else None
            if delta:
                explanation += delta
                yield wrap_content(text_component(explanation))

        yield wrap_content(component)

        full_message = explanation + "\n\n" + json.dumps(component)
        self.store.append(thread_id, {"role": "assistant", "content": full_message, "id": response_id})
        self.push_context(thread_id, full_message, intent)
