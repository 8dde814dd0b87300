import json
import logging
import time
import uuid
from collections.abc import AsyncIterator
from enum import Enum
from typing import Any, assert_never

import httpx

from shared.schemas import (
    AssistantMessage,
    ChatCompletion,
    ChatCompletionChoice,
    ChatCompletionChunk,
    ChatCompletionChunkChoice,
    ChunkDelta,
    Usage,
)
from workflow_gateway.errors import BackendSignaledError, UpstreamError
from workflow_gateway.events import Frame, FrameDecoder, WorkflowEvent
from workflow_gateway.settings import Settings

DEFAULT_TOTAL_TOKENS = 110
SYSTEM_FINGERPRINT = "fp_2f57f81c11"
DONE_LINE = "data: [DONE]\n\n"
STREAM_ENDED_MESSAGE = "workflow stream ended without a result"

logger = logging.getLogger(__name__)


class StreamState(Enum):
    STREAMING = "streaming"
    TERMINATED = "terminated"


def format_sse(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex}"


def extract_result(outputs: Any, settings: Settings) -> Any:
    """Pick the configured output variable, or hand back every output."""
    if settings.output_variable:
        if not isinstance(outputs, dict):
            return None
        return outputs.get(settings.output_variable)
    return outputs


def total_tokens(data: dict[str, Any]) -> int:
    value = data.get("total_tokens")
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value:
        return int(value)
    return DEFAULT_TOTAL_TOKENS


def _created_at(frame: Frame) -> int:
    for value in (frame.data.get("created_at"), frame.payload.get("created_at")):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)
    return int(time.time())


def build_completion(result: Any, tokens: int, model: str) -> ChatCompletion:
    return ChatCompletion(
        id=completion_id(),
        created=int(time.time()),
        model=model,
        choices=[ChatCompletionChoice(message=AssistantMessage(content=result))],
        usage=Usage(total_tokens=tokens),
        system_fingerprint=SYSTEM_FINGERPRINT,
    )


def build_chunk(result: Any, model: str, created: int) -> ChatCompletionChunk:
    return ChatCompletionChunk(
        id=completion_id(),
        created=created,
        model=model,
        choices=[
            ChatCompletionChunkChoice(delta=ChunkDelta(content=result), finish_reason="stop")
        ],
    )


class StreamTranslator:
    """Turns backend event-stream bytes into OpenAI chunk lines.

    Emits exactly one terminal chunk (result or error) followed by one
    ``[DONE]`` line; everything after that is dropped.
    """

    def __init__(self, settings: Settings, model: str) -> None:
        self._settings = settings
        self._model = model
        self._decoder = FrameDecoder()
        self.state = StreamState.STREAMING

    @property
    def terminated(self) -> bool:
        return self.state is StreamState.TERMINATED

    def feed(self, chunk: bytes | str) -> list[str]:
        if self.terminated:
            return []
        return self._handle(self._decoder.feed(chunk))

    def finish(self) -> list[str]:
        if self.terminated:
            return []
        lines = self._handle(self._decoder.flush())
        if not self.terminated:
            logger.warning("backend stream ended before workflow_finished")
            lines.extend(self.fail(STREAM_ENDED_MESSAGE))
        return lines

    def fail(self, message: str) -> list[str]:
        if self.terminated:
            return []
        self.state = StreamState.TERMINATED
        return [format_sse({"error": message}), DONE_LINE]

    def _handle(self, frames: list[Frame]) -> list[str]:
        lines: list[str] = []
        for frame in frames:
            if self.terminated:
                break
            lines.extend(self._dispatch(frame))
        return lines

    def _dispatch(self, frame: Frame) -> list[str]:
        event = frame.event
        if (
            event is WorkflowEvent.WORKFLOW_STARTED
            or event is WorkflowEvent.NODE_STARTED
            or event is WorkflowEvent.NODE_FINISHED
            or event is WorkflowEvent.PING
        ):
            return []
        if event is WorkflowEvent.WORKFLOW_FINISHED:
            result = extract_result(frame.data.get("outputs"), self._settings)
            chunk = build_chunk(result, self._model, _created_at(frame))
            self.state = StreamState.TERMINATED
            logger.info("workflow finished, closing stream")
            return [format_sse(chunk.model_dump()), DONE_LINE]
        if event is WorkflowEvent.ERROR:
            message = frame.payload.get("message") or "workflow error"
            logger.error("backend error code=%s message=%s", frame.payload.get("code"), message)
            return self.fail(str(message))
        assert_never(event)


async def stream_chat_chunks(
    resp: httpx.Response, translator: StreamTranslator
) -> AsyncIterator[str]:
    """Relay a streaming workflow response as chat-completion SSE lines.

    Closing the generator (e.g. on client disconnect) closes the backend response.
    """
    try:
        try:
            async for chunk in resp.aiter_bytes():
                for line in translator.feed(chunk):
                    yield line
                if translator.terminated:
                    break
        except httpx.HTTPError as exc:
            logger.error("backend stream broke: %s", exc)
            for line in translator.fail("backend stream interrupted"):
                yield line
        for line in translator.finish():
            yield line
    finally:
        await resp.aclose()
        logger.info("stream response closed")


async def translate_blocking(
    resp: httpx.Response, settings: Settings, model: str
) -> ChatCompletion:
    try:
        content_type = resp.headers.get("content-type", "")
        if "application/json" in content_type:
            raw = await resp.aread()
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                raise UpstreamError(502, raw.decode("utf-8", "replace"), message="invalid JSON from backend")
            data = payload.get("data") if isinstance(payload, dict) else None
            if isinstance(data, dict) and data.get("outputs") is not None:
                result = extract_result(data["outputs"], settings)
                return build_completion(result, total_tokens(data), model)
            logger.warning("blocking response without outputs")
            return build_completion("", DEFAULT_TOTAL_TOKENS, model)

        return await _collect_stream(resp, settings, model)
    finally:
        await resp.aclose()


async def _collect_stream(resp: httpx.Response, settings: Settings, model: str) -> ChatCompletion:
    decoder = FrameDecoder()
    finished: Frame | None = None

    def _consume(frames: list[Frame]) -> None:
        nonlocal finished
        for frame in frames:
            if frame.event is WorkflowEvent.WORKFLOW_FINISHED:
                finished = frame
            elif frame.event is WorkflowEvent.ERROR:
                message = frame.payload.get("message") or "workflow error"
                logger.error("backend error code=%s message=%s", frame.payload.get("code"), message)
                raise BackendSignaledError(frame.payload.get("code"), str(message))

    async for chunk in resp.aiter_bytes():
        _consume(decoder.feed(chunk))
    _consume(decoder.flush())

    if finished is None:
        logger.warning("event stream ended without workflow_finished")
        return build_completion("", DEFAULT_TOTAL_TOKENS, model)
    result = extract_result(finished.data.get("outputs"), settings)
    return build_completion(result, total_tokens(finished.data), model)
