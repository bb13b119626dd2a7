from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class GenerationSettings(BaseModel):
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    # UI ceiling; not checked against the selected model's own limit
    max_tokens: int = Field(1000, ge=1, le=4096)
    system_prompt: str = ""
    stream: bool = True


class SendMessageRequest(BaseModel):
    text: str


class SelectModelRequest(BaseModel):
    model_id: str


class UpdateSettingsRequest(BaseModel):
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    system_prompt: Optional[str] = None
    stream: Optional[bool] = None


class AnalyzePageRequest(BaseModel):
    url: str


class ModelDTO(BaseModel):
    id: str
    name: str
    provider: str
    description: str
    max_tokens: int


class ChatSummaryDTO(BaseModel):
    id: str
    title: str
    created_at: str
    updated_at: str


class MessageDTO(BaseModel):
    id: str
    role: str
    content: str
    created_at: str
    model: Optional[str] = None


class NoticeDTO(BaseModel):
    title: str
    description: str
    variant: str = "default"


class SessionStateDTO(BaseModel):
    current_chat_id: Optional[str] = None
    pending: bool = False
    loading: bool = False
    model_id: str
    settings: GenerationSettings
    page_url: Optional[str] = None
    partial_reply: str = ""
    messages: List[MessageDTO] = Field(default_factory=list)
    notices: List[NoticeDTO] = Field(default_factory=list)


# Explicit exports
__all__ = [
    "GenerationSettings",
    "SendMessageRequest",
    "SelectModelRequest",
    "UpdateSettingsRequest",
    "AnalyzePageRequest",
    "ModelDTO",
    "ChatSummaryDTO",
    "MessageDTO",
    "NoticeDTO",
    "SessionStateDTO",
]
