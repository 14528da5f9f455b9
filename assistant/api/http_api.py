"""
HTTP API adapter for the ecosystem assistant.

Architectural role:
- Expose the chat workflow over HTTP as a Server-Sent Events stream.
- Enforce adapter-level input validation through `assistant.api.chat`.
- Delegate orchestration to `assistant.core.engine.Workflow`.

Endpoint responsibilities:
- `POST /api/chat`: validate messages, run one turn, stream fragments.
- `GET /api/topics`: list the known products.
- `GET /api/rate-limit/{key}`: report a rate-limit window without consuming it.
- `GET /health`: liveness probe.

API request lifecycle (`POST /api/chat`):
1. Parse the request body (`messages`).
2. Validate synchronously; failures return HTTP 400 with the validation text.
3. Resolve the shared workflow (dependencies are built once per process).
4. Stream each fragment as one `data: <json>\\n\\n` SSE frame.

Error handling strategy:
- Validation failures -> structured HTTP 400 JSON responses.
- In-run failures arrive as a single `{"error"}` frame produced by the stream
  adapter; internal detail stays in server logs.
- Client disconnects stop the stream and cancel the in-flight run.

Side effects:
- Builds product indexes and the provider client on startup.
- Emits request debug logs only when `DEBUG == "true"`.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from assistant.api.chat import MessageValidationError, start_chat
from assistant.core.dependencies import get_dependencies
from assistant.core.engine import Workflow, create_workflow
from assistant.core.topics import KNOWN_TOPICS
from assistant.llm.provider_config import DEBUG, LOG_LEVEL


logger = logging.getLogger(__name__)


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ============================================================
# Shared workflow
# ============================================================

_WORKFLOW: Workflow | None = None


async def get_workflow() -> Workflow:
    """FastAPI dependency returning the process-wide workflow."""
    global _WORKFLOW
    if _WORKFLOW is None:
        _WORKFLOW = create_workflow(await get_dependencies())
    return _WORKFLOW


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await get_workflow()
    yield


app = FastAPI(title="Ecosystem Assistant API", lifespan=lifespan)


# ============================================================
# Request Schema
# ============================================================

class ChatRequest(BaseModel):
    """
    Chat payload shape.

    `messages` is left untyped here; `validate_messages` owns every rule so HTTP
    and CLI callers get identical validation and the same 400 responses.
    """
    messages: Any = None


def sse_frame(fragment: dict) -> str:
    return f"data: {json.dumps(fragment)}\n\n"


# ============================================================
# Chat
# ============================================================

@app.post("/api/chat")
async def chat(request: Request, body: ChatRequest, workflow: Workflow = Depends(get_workflow)):
    """
    Stream one assistant turn as Server-Sent Events.

    Response formatting:
    - `data: {"content": "..."}` for each text fragment.
    - `data: {"done": true}` on success, `data: {"error": "..."}` on failure.
    """
    if DEBUG:
        logger.debug("Incoming messages: %r", body.messages)

    try:
        fragments = start_chat(body.messages, workflow)
    except MessageValidationError as err:
        return JSONResponse(status_code=400, content={"error": str(err)})

    async def event_generator():
        """
        Yield SSE frames until a terminal fragment or client disconnect.

        Side effects:
        - Checks client connection state between fragments.
        - Closes the fragment stream, which cancels the run if still active.
        """
        try:
            async for fragment in fragments:
                if await request.is_disconnected():
                    logger.info("Client disconnected during stream.")
                    return
                yield sse_frame(fragment)
        except (BrokenPipeError, ConnectionResetError):
            logger.info("Streaming cancelled by client.")
            return
        finally:
            await fragments.aclose()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ============================================================
# Introspection
# ============================================================

@app.get("/api/topics")
def list_topics():
    return {
        "data": [
            {"id": t.id, "name": t.display_name, "summary": t.summary}
            for t in KNOWN_TOPICS
        ]
    }


@app.get("/api/rate-limit/{key}")
async def rate_limit_status(key: str, workflow: Workflow = Depends(get_workflow)):
    status = workflow.deps.rate_limiter.status(key)
    return {
        "key": key,
        "remaining": status.remaining,
        "limit": status.limit,
        "reset_in_ms": max(0, round(status.reset_time - workflow.deps.rate_limiter.now())),
    }


@app.get("/health")
def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
