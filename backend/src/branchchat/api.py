"""FastAPI application for branching chat."""

import logging
import uuid

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from branchchat.config import settings
from branchchat.db import db
from branchchat.errors import ChatError
from branchchat.models import (
    ChatRequest,
    ConversationListResponse,
    ConversationResponse,
    ModelOption,
)
from branchchat.services.chat_pipeline import ChatPipeline
from branchchat.services.model_catalog import MODEL_OPTIONS
from branchchat.services.token_registry import TokenCallbackRegistry
from branchchat.sse import chat_event_stream, create_sse_response
from models import Conversation

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Branchchat API",
    description="Branching chat with moderated, multi-provider model turns",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

token_registry = TokenCallbackRegistry()
pipeline = ChatPipeline(db, registry=token_registry)


def get_pipeline() -> ChatPipeline:
    return pipeline


def get_db():
    return db


@app.on_event("startup")
async def startup_event():
    """Initialize database on startup."""
    await db.connect()
    await db.ensure_tables_exist()


@app.on_event("shutdown")
async def shutdown_event():
    """Clean up on shutdown."""
    await pipeline.title_generator.drain()
    await db.disconnect()


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def resolve_user_id(user_id: str | None) -> str:
    """Header user ID, or the local development user."""
    return user_id or "local-dev-user"


# ============= Health & Info =============


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/models", response_model=list[ModelOption])
async def list_models():
    """Selectable models."""
    return [
        ModelOption(provider=provider, model=model, label=label)
        for provider, model, label in MODEL_OPTIONS
    ]


# ============= Chat Endpoints =============


@app.post("/chat")
async def chat(
    request: ChatRequest,
    user_id: str = Header(alias="X-User-ID", default=None),
    chat_pipeline: ChatPipeline = Depends(get_pipeline),
):
    """Run one turn. Streams tokens as SSE when ``stream`` is set."""
    user_id = resolve_user_id(user_id)
    if not request.request_id:
        request = request.model_copy(update={"request_id": str(uuid.uuid4())})
    turn_request = request.to_turn_request(user_id)

    if request.stream:
        return create_sse_response(
            chat_event_stream(chat_pipeline, turn_request, chat_pipeline.registry)
        )

    result = await chat_pipeline.run(turn_request)
    return result.model_dump(mode="json")


# ============= Conversation Endpoints =============


@app.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(
    user_id: str = Header(alias="X-User-ID", default=None),
    include_archived: bool = False,
    database=Depends(get_db),
):
    """List user's conversations."""
    user_id = resolve_user_id(user_id)
    conversations = await database.list_conversations(user_id, include_archived=include_archived)
    return ConversationListResponse(
        conversations=conversations,
        total=len(conversations),
    )


@app.get("/conversations/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: str,
    user_id: str = Header(alias="X-User-ID", default=None),
    database=Depends(get_db),
):
    """Get a conversation with its messages and branches."""
    user_id = resolve_user_id(user_id)
    conversation: Conversation | None = await database.get_conversation(conversation_id, user_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")

    messages = await database.get_messages(conversation_id)
    branches = await database.list_branches(conversation_id)
    return ConversationResponse(
        conversation=conversation,
        messages=messages,
        branches=branches,
    )
