import asyncio
import json
import logging
import time
from collections.abc import Callable
from contextlib import aclosing
from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sitesmith.errors import TransportError
from sitesmith.sse import DONE_SENTINEL, FrameDecoder
from sitesmith.transport import GenerationTransport


logger = logging.getLogger("sitesmith.session")


class Lifecycle(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    PROVISIONING_PREVIEW = "provisioning_preview"
    READY = "ready"
    FAILED = "failed"
    CANCELED = "canceled"


BUSY_LIFECYCLES = {Lifecycle.REQUESTING, Lifecycle.STREAMING, Lifecycle.PROVISIONING_PREVIEW}
TERMINAL_LIFECYCLES = {Lifecycle.READY, Lifecycle.FAILED, Lifecycle.CANCELED}


class Stage(str, Enum):
    QUEUED = "queued"
    CREATING_SANDBOX = "creating_sandbox"
    GENERATING_CODE = "generating_code"
    INSTALLING_DEPS = "installing_deps"
    STARTING_PREVIEW = "starting_preview"
    READY = "ready"


STAGE_ORDER: list[Stage] = list(Stage)


class MessageType(str, Enum):
    ASSISTANT_TEXT = "assistant_text"
    TOOL_USE = "tool_use"
    PROGRESS = "progress"
    ERROR = "error"
    COMPLETE = "complete"


# Upstream event type -> message type. Anything else counts as a parse warning.
EVENT_TYPES: dict[str, MessageType] = {
    "claude_message": MessageType.ASSISTANT_TEXT,
    "ai_message": MessageType.ASSISTANT_TEXT,
    "assistant_text": MessageType.ASSISTANT_TEXT,
    "tool_use": MessageType.TOOL_USE,
    "tool_result": MessageType.TOOL_USE,
    "progress": MessageType.PROGRESS,
    "error": MessageType.ERROR,
    "complete": MessageType.COMPLETE,
}

# Checked in order; the first stage with a matching phrase wins. These mirror the
# progress lines of the generation service, which has no formal vocabulary.
STAGE_PHRASES: list[tuple[Stage, tuple[str, ...]]] = [
    (
        Stage.CREATING_SANDBOX,
        (
            "creating new daytona sandbox",
            "using existing sandbox",
            "sandbox created",
            "connected to sandbox",
        ),
    ),
    (
        Stage.GENERATING_CODE,
        (
            "running vercel ai gateway generation",
            "parsing generated code",
            "writing",
            "generation output",
        ),
    ),
    (
        Stage.INSTALLING_DEPS,
        (
            "installing project dependencies",
            "dependencies installed",
            "npm install",
        ),
    ),
    (
        Stage.STARTING_PREVIEW,
        (
            "starting development server",
            "waiting for server to start",
            "getting preview url",
            "preview url:",
        ),
    ),
]

ERROR_FALLBACK = "Generation failed unexpectedly"
ERROR_NO_PREVIEW = "Generation finished but preview URL was not returned"
ERROR_STREAM_ENDED = "Generation stream ended before preview was ready"


def advance_stage(current: Stage, target: Stage) -> Stage:
    """Return whichever of the two stages is further along."""
    if STAGE_ORDER.index(target) > STAGE_ORDER.index(current):
        return target
    return current


def infer_stage(message: str, current: Stage) -> Stage:
    text = message.lower()
    for stage, phrases in STAGE_PHRASES:
        if any(phrase in text for phrase in phrases):
            return advance_stage(current, stage)
    return current


class GenerationEvent(BaseModel):
    """One decoded event of the generation stream."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str
    content: Any = None
    name: str | None = None
    input: Any = None
    result: Any = None
    message: str | None = None
    preview_url: str | None = Field(default=None, alias="previewUrl")
    sandbox_id: str | None = Field(default=None, alias="sandboxId")


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    created_at: float
    type: MessageType
    event_type: str
    content: Any = None
    name: str | None = None
    input: Any = None
    result: Any = None
    message: str | None = None
    preview_url: str | None = None
    sandbox_id: str | None = None


class SessionState(BaseModel):
    lifecycle: Lifecycle = Lifecycle.IDLE
    stage: Stage = Stage.QUEUED
    sandbox_id: str | None = None
    preview_url: str | None = None
    messages: list[Message] = Field(default_factory=list)
    last_progress: str | None = None
    error: str | None = None
    parse_warnings: int = 0


_FRAME_DONE = "done"
_FRAME_STOP = "stop"


class GenerationSession:
    """Drives one generation run at a time and tracks its lifecycle.

    Every run gets a request id; a run that has been superseded by a newer
    ``start()`` (or by ``cancel()``/``reset()``) never writes to the state again,
    even if its task has not observed cancellation yet.
    """

    def __init__(
        self,
        transport: GenerationTransport,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._transport = transport
        self._clock = clock
        self.state = SessionState()
        self._request_id = 0
        self._task: asyncio.Task[None] | None = None
        self._latest_prompt = ""
        self._message_counter = 0

    @property
    def is_busy(self) -> bool:
        return self.state.lifecycle in BUSY_LIFECYCLES

    @property
    def latest_prompt(self) -> str:
        return self._latest_prompt

    def snapshot(self) -> SessionState:
        return self.state.model_copy(update={"messages": list(self.state.messages)})

    def append_message(
        self, type: MessageType, event_type: str | None = None, **payload: Any
    ) -> Message:
        self._message_counter += 1
        message = Message(
            id=f"gen-msg-{self._message_counter}",
            created_at=self._clock(),
            type=type,
            event_type=event_type or type.value,
            **payload,
        )
        self.state.messages.append(message)
        return message

    async def start(self, prompt: str) -> SessionState:
        """Start a new run and wait for it to settle.

        Blank prompts are ignored. Returns the session snapshot once the run is
        ready, failed, canceled or superseded.
        """
        trimmed = prompt.strip()
        if not trimmed:
            return self.snapshot()

        self._abort_inflight()
        self._latest_prompt = trimmed
        self.state = SessionState(lifecycle=Lifecycle.REQUESTING, stage=Stage.QUEUED)
        self._request_id += 1
        request_id = self._request_id
        logger.info("session[%d] start prompt_len=%d", request_id, len(trimmed))

        task = asyncio.create_task(self._run(trimmed, request_id))
        self._task = task
        try:
            await asyncio.wait([task])
        except asyncio.CancelledError:
            if self._is_current(request_id):
                self.cancel()
            raise
        if self._task is task:
            self._task = None
        return self.snapshot()

    async def retry(self) -> SessionState:
        if not self._latest_prompt:
            return self.snapshot()
        return await self.start(self._latest_prompt)

    def cancel(self) -> bool:
        """Abort the in-flight run, keeping the messages received so far."""
        task = self._task
        if task is None or task.done():
            return False
        self._request_id += 1
        self._abort_inflight()
        self.state.lifecycle = Lifecycle.CANCELED
        logger.info("session canceled messages=%d", len(self.state.messages))
        return True

    def reset(self) -> None:
        self._request_id += 1
        self._abort_inflight()
        self.state = SessionState()

    def _abort_inflight(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    def _is_current(self, request_id: int) -> bool:
        return request_id == self._request_id

    async def _run(self, prompt: str, request_id: int) -> None:
        decoder = FrameDecoder()
        received_done = False
        try:
            async with aclosing(self._transport.stream(prompt)) as chunks:
                async for chunk in chunks:
                    if not self._is_current(request_id):
                        return
                    if self.state.lifecycle == Lifecycle.REQUESTING:
                        self.state.lifecycle = Lifecycle.STREAMING
                    for frame in decoder.feed(chunk):
                        outcome = self._handle_frame(frame, request_id)
                        if outcome == _FRAME_DONE:
                            received_done = True
                        elif outcome == _FRAME_STOP:
                            return

            if not self._is_current(request_id):
                return
            # The transport closed; a last event may be missing its delimiter
            for frame in decoder.flush():
                outcome = self._handle_frame(frame, request_id)
                if outcome == _FRAME_DONE:
                    received_done = True
                elif outcome == _FRAME_STOP:
                    return
        except asyncio.CancelledError:
            raise
        except TransportError as e:
            self._fail(request_id, e.message)
            return
        except httpx.HTTPError as e:
            self._fail(request_id, f"Network error: {e}" if str(e) else "Network error")
            return
        except Exception as e:
            logger.exception("session[%d] stream error", request_id)
            self._fail(request_id, str(e) or "An error occurred")
            return

        self._finish(request_id, received_done)

    def _parse_event(self, frame: str, request_id: int) -> GenerationEvent | None:
        try:
            event = GenerationEvent.model_validate(json.loads(frame))
        except (ValueError, ValidationError) as e:
            # json.JSONDecodeError is a ValueError
            self.state.parse_warnings += 1
            logger.warning(
                "session[%d] parse warning: %s frame=%r", request_id, e, frame[:300]
            )
            return None
        if event.type not in EVENT_TYPES:
            self.state.parse_warnings += 1
            logger.warning("session[%d] unknown event type %r", request_id, event.type)
            return None
        return event

    def _handle_frame(self, frame: str, request_id: int) -> str | None:
        if frame == DONE_SENTINEL:
            return _FRAME_DONE

        event = self._parse_event(frame, request_id)
        if event is None:
            return None

        kind = EVENT_TYPES[event.type]
        payload = event.model_dump(exclude={"type"})

        if kind is MessageType.ERROR:
            self.state.lifecycle = Lifecycle.FAILED
            self.state.error = event.message or ERROR_FALLBACK
            self.append_message(kind, event_type=event.type, **payload)
            logger.warning("session[%d] failed: %s", request_id, self.state.error)
            return _FRAME_STOP

        if kind is MessageType.COMPLETE:
            self.state.preview_url = event.preview_url or self.state.preview_url
            self.state.sandbox_id = event.sandbox_id or self.state.sandbox_id
            self.state.lifecycle = Lifecycle.PROVISIONING_PREVIEW
            self.state.stage = advance_stage(self.state.stage, Stage.STARTING_PREVIEW)
        elif kind is MessageType.PROGRESS and event.message:
            self.state.last_progress = event.message
            self.state.stage = infer_stage(event.message, self.state.stage)

        self.append_message(kind, event_type=event.type, **payload)
        return None

    def _fail(self, request_id: int, message: str) -> None:
        if not self._is_current(request_id):
            return
        self.state.lifecycle = Lifecycle.FAILED
        self.state.error = message
        logger.warning("session[%d] failed: %s", request_id, message)

    def _finish(self, request_id: int, received_done: bool) -> None:
        if not self._is_current(request_id):
            return
        if self.state.lifecycle in (Lifecycle.FAILED, Lifecycle.CANCELED):
            return
        if self.state.preview_url:
            self.state.lifecycle = Lifecycle.READY
            self.state.stage = Stage.READY
            logger.info(
                "session[%d] ready sandbox=%s preview=%s",
                request_id,
                self.state.sandbox_id,
                self.state.preview_url,
            )
            return
        self.state.lifecycle = Lifecycle.FAILED
        self.state.error = self.state.error or (
            ERROR_NO_PREVIEW if received_done else ERROR_STREAM_ENDED
        )
        logger.warning("session[%d] failed: %s", request_id, self.state.error)
