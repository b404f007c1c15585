"""Server-Sent Events support for streamed chat turns."""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator

from fastapi.responses import StreamingResponse

from branchchat.errors import ChatError, Internal
from branchchat.models import TurnRequest
from branchchat.services.token_registry import TokenCallbackRegistry

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """SSE event types."""

    DELTA = "delta"
    FINAL = "final"
    ERROR = "error"


@dataclass
class SSEEvent:
    """An SSE event to send to clients."""

    event: str
    data: dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])

    def encode(self) -> str:
        """Encode as SSE format."""
        lines = [
            f"id: {self.id}",
            f"event: {self.event}",
            f"data: {json.dumps(self.data)}",
            "",  # Empty line to end the event
        ]
        return "\n".join(lines) + "\n"


def delta_event(text: str) -> SSEEvent:
    return SSEEvent(event=EventType.DELTA.value, data={"type": "delta", "text": text})


def error_event(error: ChatError) -> SSEEvent:
    return SSEEvent(
        event=EventType.ERROR.value,
        data={"type": "error", "error": error.message, "status": error.status_code},
    )


# Turns keep running after a client disconnects so a retry can replay them
_running_turns: set[asyncio.Task] = set()


async def chat_event_stream(
    pipeline,
    turn_request: TurnRequest,
    registry: TokenCallbackRegistry,
) -> AsyncGenerator[str, None]:
    """Run one turn and yield its tokens, then a final or error event.

    The token sink is registered under the request ID before the pipeline
    starts and removed when the stream ends, however it ends.
    """
    request_id = turn_request.request_id
    queue: asyncio.Queue[SSEEvent | None] = asyncio.Queue()

    def on_token(token: str):
        queue.put_nowait(delta_event(token))

    async def run_turn():
        try:
            result = await pipeline.run(turn_request)
            queue.put_nowait(
                SSEEvent(
                    event=EventType.FINAL.value,
                    data={"type": "final", "payload": result.model_dump(mode="json")},
                )
            )
        except ChatError as e:
            queue.put_nowait(error_event(e))
        except Exception as e:
            logger.exception(f"Streamed turn {request_id} failed: {e}")
            queue.put_nowait(error_event(Internal("Internal Server Error")))
        finally:
            queue.put_nowait(None)

    registry.register(request_id, on_token)
    task = asyncio.create_task(run_turn())
    _running_turns.add(task)
    task.add_done_callback(_running_turns.discard)

    try:
        while True:
            event = await queue.get()
            if event is None:
                break
            yield event.encode()
    finally:
        registry.unregister(request_id)


def create_sse_response(generator: AsyncGenerator[str, None]) -> StreamingResponse:
    """Create an SSE StreamingResponse."""
    return StreamingResponse(
        generator,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
