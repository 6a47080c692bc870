import asyncio
import re
from typing import Optional, Protocol, Set

from openai import AsyncOpenAI

from backend import RoomBackend
from constants import (
    AI_API_KEY,
    AI_BASE_URL,
    AI_FALLBACK_TEXT,
    AI_INSTRUCTIONS,
    AI_MODEL,
    AI_REQUEST_TIMEOUT,
    AI_SENDER,
    AI_TRIGGER,
)
from logging_config import get_logger
from relay import MessageRelay
from schemas.rooms import Message

logger = get_logger(__name__)

_TRIGGER_RE = re.compile(re.escape(AI_TRIGGER), re.IGNORECASE)


class CompletionError(Exception):
    """Raised when the completion service fails or returns nothing."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class CompletionClient(Protocol):
    async def complete(self, prompt: str) -> str:
        ...


class OpenAICompletionClient:
    """Single-attempt text completion against an OpenAI-compatible endpoint."""

    def __init__(self, api_key: Optional[str] = AI_API_KEY, base_url: str = AI_BASE_URL,
                 model: str = AI_MODEL, timeout: float = AI_REQUEST_TIMEOUT):
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.timeout = timeout
        self._client: Optional[AsyncOpenAI] = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise CompletionError("No API key configured for the completion service")
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
            logger.info(f"Completion client initialized for {self.base_url} (model: {self.model})")
        return self._client

    async def complete(self, prompt: str) -> str:
        client = self._get_client()
        try:
            response = await client.responses.create(
                model=self.model,
                instructions=AI_INSTRUCTIONS,
                input=prompt,
            )
        except Exception as e:
            raise CompletionError(f"Completion request failed: {e}", e)

        text = (response.output_text or "").strip()
        if not text:
            raise CompletionError("Completion service returned an empty response")
        return text


def is_triggered(text: str) -> bool:
    return AI_TRIGGER in text.lower()


def strip_trigger(text: str) -> str:
    return _TRIGGER_RE.sub("", text, count=1).strip()


def build_prompt(history, question: str) -> str:
    lines = [f"{m.sender}: {m.text}" for m in history]
    lines.append(strip_trigger(question))
    return "\n".join(lines)


class AIAugmentor:
    def __init__(self, backend: RoomBackend, relay: MessageRelay, client: Optional[CompletionClient] = None):
        self.backend = backend
        self.relay = relay
        self.client = client or OpenAICompletionClient()
        self._tasks: Set[asyncio.Task] = set()

    def capture_prompt(self, room_id: str, text: str) -> Optional[str]:
        """Build the prompt for a triggering message, or None.

        Must run in the same step as the append: later messages are not part
        of this trigger's context.
        """
        if not is_triggered(text):
            return None
        room = self.backend.get_room(room_id)
        if room is None:
            return None
        return build_prompt(room.history_snapshot(), text)

    def start(self, room_id: str, prompt: str) -> asyncio.Task:
        task = asyncio.create_task(self.respond(room_id, prompt))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"Assistant triggered in room {room_id}")
        return task

    async def respond(self, room_id: str, prompt: str) -> Message:
        try:
            reply = (await self.client.complete(prompt) or "").strip()
            if not reply:
                raise CompletionError("Completion service returned an empty response")
        except Exception as e:
            logger.error(f"Assistant reply failed for room {room_id}: {e}", exc_info=True)
            reply = AI_FALLBACK_TEXT
        return await self.relay.inject(room_id, Message(sender=AI_SENDER, text=reply))

    async def wait_idle(self):
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
