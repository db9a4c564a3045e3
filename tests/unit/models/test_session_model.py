"""セッション関連モデルのユニットテスト。"""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from specwizard.models.session import MAX_MESSAGE_LENGTH, Message, Session


class TestMessage:
    def test_defaults(self) -> None:
        message = Message(role="user", content="Hello")
        assert message.id
        assert message.timestamp.tzinfo is not None
        assert message.metadata is None

    def test_ids_are_unique(self) -> None:
        assert Message(role="user", content="a").id != Message(role="user", content="a").id

    def test_is_immutable(self) -> None:
        message = Message(role="user", content="Hello")
        with pytest.raises(ValidationError):
            message.content = "changed"  # type: ignore[misc]

    def test_rejects_empty_content(self) -> None:
        with pytest.raises(ValidationError):
            Message(role="user", content="")

    def test_rejects_too_long_content(self) -> None:
        with pytest.raises(ValidationError):
            Message(role="user", content="x" * (MAX_MESSAGE_LENGTH + 1))

    def test_rejects_unknown_role(self) -> None:
        with pytest.raises(ValidationError):
            Message(role="tool", content="x")  # type: ignore[arg-type]


class TestSession:
    def test_is_expired(self) -> None:
        now = datetime(2025, 1, 1, tzinfo=UTC)
        session = Session(id="s", created_at=now, last_accessed_at=now, expires_at=now + timedelta(days=30))

        assert not session.is_expired(now + timedelta(days=29))
        assert session.is_expired(now + timedelta(days=30))

    def test_new_session_is_active_with_empty_state(self) -> None:
        now = datetime(2025, 1, 1, tzinfo=UTC)
        session = Session(id="s", created_at=now, last_accessed_at=now, expires_at=now)
        assert session.status == "active"
        assert session.state.conversation_history == []
        assert session.state.specification is None
