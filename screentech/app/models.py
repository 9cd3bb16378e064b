"""Pydantic schemas shared across the core and the API layer."""
from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Sender(str, Enum):
    USER = "user"
    ASSISTANT = "model"


class PressModel(str, Enum):
    TP_JET520HD_PLUS = "Truepress JET 520HD+"


class MachineProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    serial_number: str
    model: PressModel
    nickname: Optional[str] = None
    install_date: Optional[date] = None


class Message(BaseModel):
    id: str = Field(default_factory=_new_id)
    sender: Sender
    text: str = ""
    timestamp: datetime = Field(default_factory=_now)
    image_url: Optional[str] = None
    is_pending: bool = False
    is_verified_fix: bool = False


class KnowledgeEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    serial_number: str
    issue: str
    solution: str
    recorded_at: datetime = Field(default_factory=_now)


class ConnectRequest(BaseModel):
    serial_number: str


class ChatRequest(BaseModel):
    message: str = ""
    # Data URI as produced by a browser FileReader, or bare base64
    image: Optional[str] = None


class ClearHistoryRequest(BaseModel):
    confirm: bool = False


class SessionState(BaseModel):
    connected: bool
    profile: Optional[MachineProfile] = None
    messages: List[Message] = Field(default_factory=list)
    verifiable_message_ids: List[str] = Field(default_factory=list)
    streaming: bool = False


class VerifyResponse(BaseModel):
    message: Message
    knowledge_entry: Optional[KnowledgeEntry] = None


class HealthResponse(BaseModel):
    status: str
    environment: str
    version: str = "0.1.0"
