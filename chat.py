import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from openai import OpenAI, OpenAIError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful assistant for children. Provide simple, fun, and educational answers. "
    "Use Markdown formatting to make your responses more engaging."
)
EMPTY_REPLY_FALLBACK = "Sorry, I couldn't generate a response."
ERROR_REPLY = "Oops! Something went wrong. Please try again."


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    role: Role
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role.value, "content": self.content}


class CompletionError(Exception):
    """Raised when the completion endpoint could not produce a reply."""


class CompletionClient:
    """Thin wrapper over an OpenAI-compatible chat-completion endpoint."""

    def __init__(self, base_url: str, api_key: Optional[str], model: str):
        self.base_url = base_url
        self.api_key = api_key
        self.model = model
        self._client: Optional[OpenAI] = None

    def _get_client(self) -> OpenAI:
        if self._client is None:
            if not self.api_key:
                raise CompletionError("No API key configured for the completion endpoint")
            self._client = OpenAI(base_url=self.base_url, api_key=self.api_key, max_retries=0)
        return self._client

    def complete(self, system: str, messages: Iterable[Message]) -> str:
        payload = [Message(Role.SYSTEM, system).to_dict()]
        payload.extend(m.to_dict() for m in messages)

        client = self._get_client()
        try:
            completion = client.chat.completions.create(model=self.model, messages=payload)
        except OpenAIError as exc:
            raise CompletionError(str(exc)) from exc

        choice = completion.choices[0] if completion.choices else None
        if choice is None:
            return ""
        message = getattr(choice, "message", None)
        if message is None:
            return ""
        return getattr(message, "content", "") or ""


class TranscriptController:
    """Owns one page's transcript and drives a request/response cycle per submit.

    ``generation`` counts submits; a reply is only appended if no newer submit
    started while it was outstanding.
    """

    def __init__(self, client, system_prompt: str = SYSTEM_PROMPT):
        self.client = client
        self.system_prompt = system_prompt
        self.input = ""
        self.busy = False
        self.generation = 0
        self._messages: List[Message] = []
        self._lock = threading.Lock()

    @property
    def messages(self) -> Tuple[Message, ...]:
        with self._lock:
            return tuple(self._messages)

    def reset(self) -> None:
        with self._lock:
            self._messages = []
            self.input = ""
            # Any outstanding reply belongs to the cleared conversation.
            self.generation += 1
            self.busy = False

    def submit(self, text: Optional[str] = None) -> Optional[Message]:
        if text is None:
            text = self.input
        if not text or not text.strip():
            return None

        with self._lock:
            prior = list(self._messages)
            self._messages.append(Message(Role.USER, text))
            self.input = ""
            self.busy = True
            self.generation += 1
            generation = self.generation

        # Payload is rebuilt from the pre-submit snapshot plus a new user message.
        request = prior + [Message(Role.USER, text)]
        try:
            reply = self.client.complete(self.system_prompt, request)
            content = reply or EMPTY_REPLY_FALLBACK
        except Exception:
            logger.exception("Completion request failed")
            content = ERROR_REPLY

        with self._lock:
            if generation != self.generation:
                logger.info("Discarding stale reply for request %s (current %s)", generation, self.generation)
                return None
            assistant = Message(Role.ASSISTANT, content)
            self._messages.append(assistant)
            self.busy = False
            return assistant

    def to_dicts(self) -> List[dict]:
        return [m.to_dict() for m in self.messages]
