"""
chat_server.py — HTTP surface for the analytics chat route.

Routes
------
POST /api/analytics-chat   body {prompt, threadId, responseId}
                           → text/event-stream of <content thesys="true"> chunks
GET  /health               → 200 {"status":"healthy"}

The server is a ``ThreadingHTTPServer``; the conversation store is shared
by all request threads and lives only as long as the process. Each thread
keeps its most recent ``chat.history_messages * 2`` messages. The response
body is written chunk by chunk and closed with the connection (HTTP/1.0).

Usage:
    python chat_server.py                      # $PORT or 8000
    python chat_server.py --port 3000 --config config.yaml
"""

import argparse
import json
import logging
import os
import sys
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from campaign_analytics.analytics_chat import AnalyticsChatHandler
from campaign_analytics.config import load_config, load_env

logger = logging.getLogger("chat_server")

CHAT_PATH = "/api/analytics-chat"
_HEALTH_PATHS = frozenset(("/", "/health", "/healthz"))
_HEALTH_BODY = b'{"status":"healthy","service":"analytics-chat"}'


class ChatRequestHandler(BaseHTTPRequestHandler):
    """Dispatches chat and health requests to ``server.chat_handler``."""

    def _send_json(self, status: int, payload: dict) -> None:
        body = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self) -> None:  # noqa: N802
        if self.path in _HEALTH_PATHS:
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(_HEALTH_BODY)))
            self.end_headers()
            self.wfile.write(_HEALTH_BODY)
        else:
            self._send_json(404, {"error": "Not found"})

    def do_POST(self) -> None:  # noqa: N802
        if self.path != CHAT_PATH:
            self._send_json(404, {"error": "Not found"})
            return

        length = int(self.headers.get("Content-Length") or 0)
        raw = self.rfile.read(length) if length else b""
        try:
            body = json.loads(raw.decode("utf-8") or "null")
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            self._send_json(400, {"error": f"Invalid JSON body: {exc}"})
            return
        if not isinstance(body, dict):
            self._send_json(400, {"error": "Request body must be a JSON object"})
            return

        chunks = self.server.chat_handler.handle(body)

        self.send_response(200)
        self.send_header("Content-Type", "text/event-stream")
        self.send_header("Cache-Control", "no-cache, no-transform")
        self.send_header("Connection", "close")
        self.end_headers()
        try:
            for chunk in chunks:
                self.wfile.write(chunk.encode("utf-8"))
                self.wfile.flush()
        except (BrokenPipeError, ConnectionResetError):
            logger.warning("Client disconnected mid-stream")
        except Exception as exc:
            # Headers are already sent; the only signal left is closing the stream.
            logger.error("Stream error: %s", exc, exc_info=True)

    def log_message(self, fmt: str, *args: object) -> None:  # noqa: D102
        logger.debug("%s - %s", self.address_string(), fmt % args)


def _configure_logging() -> None:
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s | %(levelname)-8s | %(name)-35s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )
    for noisy in ("urllib3", "httpx", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def build_server(host: str, port: int, chat_handler: AnalyticsChatHandler) -> ThreadingHTTPServer:
    server = ThreadingHTTPServer((host, port), ChatRequestHandler)
    server.chat_handler = chat_handler
    return server


def main() -> None:
    parser = argparse.ArgumentParser(prog="analytics-chat", description="Analytics chat HTTP server.")
    parser.add_argument("--config", default="config.yaml")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=int(os.environ.get("PORT", 8000)))
    args = parser.parse_args()
    _configure_logging()

    env = load_env()
    cfg = load_config(args.config)
    api_key = env.get("THESYS_API_KEY")
    if not api_key:
        logger.critical("THESYS_API_KEY is not set")
        sys.exit(1)

    handler = AnalyticsChatHandler.from_config(cfg, api_key)
    server = build_server(args.host, args.port, handler)
    logger.info("Analytics chat listening on %s:%d  [POST %s]", args.host, args.port, CHAT_PATH)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        server.server_close()


if __name__ == "__main__":
    main()
