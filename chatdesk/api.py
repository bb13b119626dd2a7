from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from .auth import AuthDependency, current_owner
from .config import configure_logging
from .errors import AuthRequired, PageAnalysisError, ValidationError
from .models import (
    AnalyzePageRequest,
    ChatSummaryDTO,
    GenerationSettings,
    MessageDTO,
    ModelDTO,
    NoticeDTO,
    SelectModelRequest,
    SendMessageRequest,
    SessionStateDTO,
    UpdateSettingsRequest,
)
from .registry import MODELS
from .repository import Chat
from .service import ChatService
from .session import SessionController

configure_logging()
logger = logging.getLogger("chatdesk")

app = FastAPI(title="Chatdesk API", version="1.0.0")

# Router with authentication required on all endpoints
router = APIRouter(dependencies=[AuthDependency])


@app.exception_handler(ValidationError)
async def on_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": exc.message})


@app.exception_handler(AuthRequired)
async def on_auth_required(request: Request, exc: AuthRequired) -> JSONResponse:
    return JSONResponse(status_code=401, content={"detail": exc.message})


def get_session(owner_id: str = Depends(current_owner)) -> SessionController:
    return ChatService.instance().session_for(owner_id)


def _chat_dto(chat: Chat) -> ChatSummaryDTO:
    return ChatSummaryDTO(
        id=chat.id,
        title=chat.title,
        created_at=chat.created_at.isoformat(),
        updated_at=chat.updated_at.isoformat(),
    )


def _snapshot(session: SessionController) -> SessionStateDTO:
    state = session.state
    return SessionStateDTO(
        current_chat_id=state.current_chat_id,
        pending=state.pending,
        loading=state.loading,
        model_id=session.model.id,
        settings=session.settings,
        page_url=state.page_context.url if state.page_context else None,
        partial_reply=state.partial_reply,
        messages=[
            MessageDTO(
                id=m.id,
                role=m.role,
                content=m.content,
                created_at=m.created_at.isoformat(),
                model=m.model,
            )
            for m in state.messages
        ],
        notices=[
            NoticeDTO(title=n.title, description=n.description, variant=n.variant)
            for n in session.drain_notices()
        ],
    )


@app.get("/healthz")
async def healthz() -> dict:
    return {"status": "ok"}


@router.get("/models", response_model=List[ModelDTO])
async def list_models() -> List[ModelDTO]:
    return [
        ModelDTO(
            id=m.id,
            name=m.name,
            provider=m.provider,
            description=m.description,
            max_tokens=m.max_tokens,
        )
        for m in MODELS
    ]


@router.get("/chats", response_model=List[ChatSummaryDTO])
async def list_chats(session: SessionController = Depends(get_session)) -> List[ChatSummaryDTO]:
    chats = await session.refresh_chats()
    return [_chat_dto(c) for c in chats]


@router.post("/chats/new", response_model=SessionStateDTO)
async def new_chat(session: SessionController = Depends(get_session)) -> SessionStateDTO:
    session.start_new_chat()
    return _snapshot(session)


@router.post("/chats/{chat_id}/select", response_model=SessionStateDTO)
async def select_chat(chat_id: str, session: SessionController = Depends(get_session)) -> SessionStateDTO:
    await session.select_chat(chat_id)
    return _snapshot(session)


@router.delete("/chats/{chat_id}", response_model=SessionStateDTO)
async def delete_chat(chat_id: str, session: SessionController = Depends(get_session)) -> SessionStateDTO:
    # Deleting a chat that no longer exists is not an error
    await session.delete_chat(chat_id)
    return _snapshot(session)


@router.get("/session", response_model=SessionStateDTO)
async def get_session_state(session: SessionController = Depends(get_session)) -> SessionStateDTO:
    return _snapshot(session)


@router.post("/session/clear", response_model=SessionStateDTO)
async def clear_session(session: SessionController = Depends(get_session)) -> SessionStateDTO:
    session.clear_current_chat()
    return _snapshot(session)


@router.post("/session/messages", response_model=SessionStateDTO)
async def send_message(req: SendMessageRequest, session: SessionController = Depends(get_session)) -> SessionStateDTO:
    if not req.text.strip():
        raise ValidationError("Message text is empty")
    if session.state.pending:
        raise HTTPException(status_code=409, detail="A reply is already pending")
    # A refused send (e.g. chat creation failed) is reported through the notices
    await session.send_user_message(req.text)
    return _snapshot(session)


@router.put("/session/settings", response_model=GenerationSettings)
async def update_settings(req: UpdateSettingsRequest, session: SessionController = Depends(get_session)) -> GenerationSettings:
    return session.update_settings(**req.model_dump(exclude_none=True))


@router.put("/session/model", response_model=ModelDTO)
async def select_model(req: SelectModelRequest, session: SessionController = Depends(get_session)) -> ModelDTO:
    m = session.select_model(req.model_id)
    return ModelDTO(
        id=m.id,
        name=m.name,
        provider=m.provider,
        description=m.description,
        max_tokens=m.max_tokens,
    )


@router.post("/session/page", response_model=SessionStateDTO)
async def analyze_page(req: AnalyzePageRequest, session: SessionController = Depends(get_session)) -> SessionStateDTO:
    try:
        await session.analyze_page(req.url)
    except PageAnalysisError as e:
        raise HTTPException(status_code=503, detail=e.message)
    return _snapshot(session)


# Include the secured router
app.include_router(router)
