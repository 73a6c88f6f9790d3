from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class VerifyCodeRequest(BaseModel):
    code: Any = None


class VerifyCodeResponse(BaseModel):
    ok: bool
    label: Optional[str] = None
    remaining: int


class LogoutResponse(BaseModel):
    ok: bool


class ConversationCreateRequest(BaseModel):
    title: Optional[str] = None


class ConversationItem(BaseModel):
    id: int
    title: Optional[str] = None


class ConversationRecord(BaseModel):
    id: int
    title: Optional[str] = None
    created_at: Optional[datetime] = None


class MessageCreateRequest(BaseModel):
    role: Optional[str] = None
    content: Optional[str] = None


class MessageRecord(BaseModel):
    id: int
    conversation_id: int
    role: Optional[str] = None
    content: Optional[str] = None
    created_at: Optional[datetime] = None
