import json
from typing import Any


DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
SSE_DONE = f"{DATA_PREFIX} {DONE_SENTINEL}\n\n"


def sse_format(event: dict[str, Any]) -> str:
    return f"{DATA_PREFIX} {json.dumps(event)}\n\n"


def _data_payload(raw_event: str) -> str | None:
    data_lines = [
        line[len(DATA_PREFIX):].lstrip()
        for line in raw_event.split("\n")
        if line.startswith(DATA_PREFIX)
    ]
    if not data_lines:
        return None
    payload = "\n".join(data_lines)
    return payload if payload.strip() else None


class FrameDecoder:
    """Incremental decoder for `data:` frames of a server-sent event stream.

    Chunks may split events (or CRLF pairs) anywhere; the decoder buffers until a
    blank line closes an event. Frames come back in arrival order, including the
    ``[DONE]`` sentinel, which callers handle themselves.
    """

    def __init__(self) -> None:
        self.buffer = ""

    def feed(self, chunk: str) -> list[str]:
        # Normalizing the whole buffer also catches a \r\n pair split across chunks
        self.buffer = (self.buffer + chunk).replace("\r\n", "\n")

        frames: list[str] = []
        while True:
            idx = self.buffer.find("\n\n")
            if idx == -1:
                break
            raw_event = self.buffer[:idx]
            self.buffer = self.buffer[idx + 2:]
            payload = _data_payload(raw_event)
            if payload is not None:
                frames.append(payload)
        return frames

    def flush(self) -> list[str]:
        """Salvage a trailing event that never got its closing blank line."""
        remaining, self.buffer = self.buffer, ""
        if not remaining.strip():
            return []
        payload = _data_payload(remaining)
        return [payload] if payload is not None else []
