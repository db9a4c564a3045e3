"""セッション関連のデータモデル。"""

import uuid
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from specwizard.models.specification import ProgressState, Specification

SessionStatus = Literal["active", "submitted", "abandoned"]
MessageRole = Literal["user", "assistant", "system"]

MAX_MESSAGE_LENGTH = 10000


class MessageMetadata(BaseModel):
    """メッセージに付随する補足情報。"""

    model_config = ConfigDict(frozen=True)

    spec_updated: bool = False
    progress_updated: bool = False


class Message(BaseModel):
    """会話の1発言。作成後は変更不可。"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: MessageRole
    content: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    metadata: MessageMetadata | None = None


class ContactInfo(BaseModel):
    """提出時の連絡先情報。"""

    name: str = ""
    email: str = ""
    phone: str = ""
    budget_range: str | None = None
    timeline: str | None = None
    referral_source: str | None = None
    urgency: str | None = None


class SessionState(BaseModel):
    """セッションの現在の状態。"""

    conversation_history: list[Message] = Field(default_factory=list)
    specification: Specification | None = None
    progress: ProgressState | None = None
    user_info: ContactInfo | None = None


class Session(BaseModel):
    """仕様ヒアリングのセッション。"""

    id: str
    status: SessionStatus = "active"
    created_at: datetime
    last_accessed_at: datetime
    expires_at: datetime
    magic_link_token: str | None = None
    magic_link_expires_at: datetime | None = None
    submission_id: str | None = None
    state: SessionState = Field(default_factory=SessionState)

    def is_expired(self, now: datetime) -> bool:
        """有効期限を過ぎているかを返す。"""
        return now >= self.expires_at
