import logging
import os
import threading
import time
import uuid
from collections import OrderedDict
from time import perf_counter
from typing import Optional, Tuple

from dotenv import load_dotenv
from flask import Flask, jsonify, render_template, request

from chat import CompletionClient, TranscriptController

load_dotenv()

# ----- Config -----
DEFAULT_BASE_URL = os.getenv("DEEPSEEK_BASE_URL", "https://api.deepseek.com")
DEFAULT_API_KEY = os.getenv("DEEPSEEK_API_KEY")
DEFAULT_MODEL = os.getenv("MODEL_ID", "deepseek-chat")
MAX_PAGES = int(os.getenv("MAX_PAGES", "1000"))
PAGE_IDLE_SECONDS = float(os.getenv("PAGE_IDLE_SECONDS", "3600"))


def _normalize_level(raw: str) -> int:
    candidate = str(raw or "INFO").strip().upper()
    return {
        "CRITICAL": logging.CRITICAL,
        "ERROR": logging.ERROR,
        "WARNING": logging.WARNING,
        "INFO": logging.INFO,
        "DEBUG": logging.DEBUG,
    }.get(candidate, logging.INFO)


logging.basicConfig(
    level=_normalize_level(os.getenv("LOG_LEVEL", "INFO")),
    format="[%(asctime)s] %(levelname)s - %(message)s",
)
logger = logging.getLogger("kidschat")


class TranscriptRegistry:
    """Per-page transcripts, keyed by the page id rendered into each page.

    Holds at most ``max_pages`` transcripts; the least recently used one is
    dropped first, and any page idle for ``idle_seconds`` is dropped on the
    next access.
    """

    def __init__(self, client, max_pages: int = MAX_PAGES, idle_seconds: float = PAGE_IDLE_SECONDS, clock=time.monotonic):
        self.client = client
        self.max_pages = max_pages
        self.idle_seconds = idle_seconds
        self.clock = clock
        self._pages: "OrderedDict[str, Tuple[TranscriptController, float]]" = OrderedDict()
        self._lock = threading.Lock()

    def _evict(self, now: float) -> None:
        while self._pages:
            page_id, (_, last_seen) = next(iter(self._pages.items()))
            if len(self._pages) <= self.max_pages and now - last_seen < self.idle_seconds:
                break
            del self._pages[page_id]
            logger.debug("Dropped transcript for page %s", page_id)

    def open(self) -> Tuple[str, TranscriptController]:
        page_id = uuid.uuid4().hex
        controller = TranscriptController(self.client)
        with self._lock:
            now = self.clock()
            self._pages[page_id] = (controller, now)
            self._evict(now)
        return page_id, controller

    def get(self, page_id: Optional[str]) -> Optional[TranscriptController]:
        if not page_id:
            return None
        with self._lock:
            now = self.clock()
            self._evict(now)
            entry = self._pages.get(page_id)
            if entry is None:
                return None
            controller = entry[0]
            self._pages[page_id] = (controller, now)
            self._pages.move_to_end(page_id)
            return controller

    def __len__(self) -> int:
        with self._lock:
            return len(self._pages)


def _requested_page_id() -> Optional[str]:
    data = request.get_json(silent=True)
    if isinstance(data, dict) and isinstance(data.get("page_id"), str):
        return data["page_id"]
    return request.args.get("page_id")


def _current_controller(registry: TranscriptRegistry) -> Tuple[str, TranscriptController]:
    page_id = _requested_page_id()
    controller = registry.get(page_id)
    if controller is None:
        # Expired page, server restart, or an API call without loading the page.
        page_id, controller = registry.open()
    return page_id, controller


def _state(page_id: str, controller: TranscriptController) -> dict:
    return {"page_id": page_id, "messages": controller.to_dicts(), "busy": controller.busy}


def create_app(client=None, max_pages: int = MAX_PAGES, idle_seconds: float = PAGE_IDLE_SECONDS) -> Flask:
    if client is None:
        if not DEFAULT_API_KEY:
            logger.warning("DEEPSEEK_API_KEY is not set; chat requests will fail until it is configured")
        client = CompletionClient(base_url=DEFAULT_BASE_URL, api_key=DEFAULT_API_KEY, model=DEFAULT_MODEL)

    app = Flask(__name__, static_folder="static", template_folder="templates")

    registry = TranscriptRegistry(client, max_pages=max_pages, idle_seconds=idle_seconds)
    app.extensions["transcripts"] = registry

    @app.route("/")
    def index():
        # Every page load gets its own conversation.
        page_id, _ = registry.open()
        return render_template("index.html", page_id=page_id)

    @app.route("/api/history", methods=["GET"])
    def history():
        return jsonify(_state(*_current_controller(registry)))

    @app.route("/api/reset", methods=["POST"])
    def reset_chat():
        page_id, controller = _current_controller(registry)
        controller.reset()
        return jsonify({"ok": True, "page_id": page_id})

    @app.route("/api/chat", methods=["POST"])
    def chat():
        data = request.get_json(silent=True) or {}
        raw = data.get("message") if isinstance(data, dict) else None
        user_msg = raw if isinstance(raw, str) else ""
        page_id, controller = _current_controller(registry)

        if not user_msg.strip():
            payload = _state(page_id, controller)
            payload["ignored"] = True
            return jsonify(payload)

        start_time = perf_counter()
        reply = controller.submit(user_msg)
        latency_ms = int((perf_counter() - start_time) * 1000)
        logger.info("Chat turn finished in %sms (%s messages)", latency_ms, len(controller.messages))

        payload = _state(page_id, controller)
        payload["reply"] = reply.content if reply is not None else None
        payload["latency_ms"] = latency_ms
        return jsonify(payload)

    return app


app = create_app()


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
