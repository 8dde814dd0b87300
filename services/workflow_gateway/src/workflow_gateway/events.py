import codecs
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from workflow_gateway.errors import ParseError

DATA_PREFIX = "data:"

logger = logging.getLogger(__name__)


class WorkflowEvent(str, Enum):
    WORKFLOW_STARTED = "workflow_started"
    NODE_STARTED = "node_started"
    NODE_FINISHED = "node_finished"
    WORKFLOW_FINISHED = "workflow_finished"
    PING = "ping"
    ERROR = "error"


@dataclass(frozen=True)
class Frame:
    event: WorkflowEvent
    payload: dict[str, Any]

    @property
    def data(self) -> dict[str, Any]:
        data = self.payload.get("data")
        return data if isinstance(data, dict) else {}


def parse_frame_line(line: str) -> Frame | None:
    """Parse one SSE line into a frame.

    Returns ``None`` for lines that carry no frame (comments, blank lines,
    non-object data, unknown event kinds). Raises ``ParseError`` for a
    ``data:`` line whose JSON object does not parse.
    """
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        return None
    body = line[len(DATA_PREFIX):].strip()
    if not body.startswith("{"):
        return None
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise ParseError(line, str(exc)) from exc
    if not isinstance(payload, dict):
        return None
    try:
        event = WorkflowEvent(payload.get("event"))
    except ValueError:
        logger.debug("ignoring unknown event=%s", payload.get("event"))
        return None
    return Frame(event=event, payload=payload)


class FrameDecoder:
    """Incremental decoder for the backend event stream.

    Bytes may be split anywhere, including inside a line or a multi-byte
    character; only complete lines are parsed and the tail is kept.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes | str) -> list[Frame]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._parse_lines(lines)

    def flush(self) -> list[Frame]:
        """Parse whatever is left once the stream has ended."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return self._parse_lines([tail])

    def _parse_lines(self, lines: list[str]) -> list[Frame]:
        frames = []
        for line in lines:
            try:
                frame = parse_frame_line(line)
            except ParseError as exc:
                logger.warning("skipping frame: %s line=%s", exc.message, exc.line[:100])
                continue
            if frame is not None:
                frames.append(frame)
        return frames
