import time
import uuid
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class Role(str, Enum):
    """Message role options"""
    USER = "user"
    ASSISTANT = "assistant"


class ConversationMessage(BaseModel):
    """One message of a session transcript, optionally tagged with action labels."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: Role = Role.USER
    text: str = ""
    actions: List[str] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)

    @classmethod
    def user(cls, text: str) -> "ConversationMessage":
        return cls(role=Role.USER, text=text)

    @classmethod
    def assistant(
        cls, text: str, actions: Optional[List[str]] = None, created_at: Optional[float] = None
    ) -> "ConversationMessage":
        message = cls(role=Role.ASSISTANT, text=text, actions=list(actions or []))
        if created_at is not None:
            message.created_at = created_at
        return message
