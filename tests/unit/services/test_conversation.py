"""ConversationServiceのユニットテスト。"""

import pytest
from helpers import FakeClock, ScriptedGenerator, merge_output, spec_payload

from specwizard.models.errors import (
    GeneratorError,
    InputValidationError,
    SessionClosedError,
    SessionNotFoundError,
    StorageUnavailableError,
)
from specwizard.services.conversation import FALLBACK_REPLY, ConversationService
from specwizard.services.merge import SpecificationMergeEngine
from specwizard.services.progress import ProgressTracker
from specwizard.services.rate_limit import RateLimitedGenerator, RateLimiter
from specwizard.services.session import SessionManager
from specwizard.storage.base import Record
from specwizard.storage.memory import MemoryRecordStore


class FailingMessageStore(MemoryRecordStore):
    """発言レコードの書き込みだけが失敗するストア。"""

    async def put(self, record: Record) -> None:
        if record.sk.startswith("MESSAGE#"):
            raise StorageUnavailableError("table unavailable")
        await super().put(record)


class TestDogWalkerScenario:
    async def test_first_turn_builds_specification(
        self,
        conversation_service: ConversationService,
        session_manager: SessionManager,
        generator: ScriptedGenerator,
    ) -> None:
        session = await session_manager.create_session()
        generator.replies.append("Great idea! Who will use it?")
        generator.completions.append(merge_output(spec_payload(overview="A booking app for dog walkers")))

        result = await conversation_service.handle_turn(session.id, "I want a booking app for dog walkers")

        assert result.spec_updated is True
        assert result.specification is not None
        assert result.specification.version == 1
        assert result.specification.plain_english_summary.overview == "A booking app for dog walkers"
        assert result.progress is not None
        assert "overview" not in result.progress.missing_sections
        assert "flows" in result.progress.missing_sections
        assert result.assistant_message.content == "Great idea! Who will use it?"

        stored = await session_manager.get_session(session.id)
        assert [m.role for m in stored.state.conversation_history] == ["user", "assistant"]
        assert stored.state.specification is not None
        assert stored.state.specification.version == 1
        assert stored.state.progress is not None

    async def test_second_turn_keeps_earlier_facts(
        self,
        conversation_service: ConversationService,
        session_manager: SessionManager,
        generator: ScriptedGenerator,
    ) -> None:
        session = await session_manager.create_session()
        generator.completions.append(
            merge_output(spec_payload(overview="A booking app for dog walkers", key_features=["Book walks"]))
        )
        await conversation_service.handle_turn(session.id, "I want a booking app for dog walkers")
        # 2回目の出力では既存の機能が抜け落ちている
        generator.completions.append(
            merge_output(spec_payload(overview="A booking app for dog walkers", key_features=["Pay online"]))
        )

        result = await conversation_service.handle_turn(session.id, "Owners should pay online")

        assert result.specification is not None
        assert result.specification.version == 2
        assert result.specification.plain_english_summary.key_features == ["Pay online", "Book walks"]
        update_prompt = generator.complete_calls[1][0].content
        assert "Book walks" in update_prompt
        assert "Owners should pay online" in update_prompt


class TestStreamTurn:
    async def test_ack_is_sent_before_generation(
        self,
        conversation_service: ConversationService,
        session_manager: SessionManager,
        generator: ScriptedGenerator,
    ) -> None:
        session = await session_manager.create_session()
        generator.replies.append("Tell me more")
        events = conversation_service.stream_turn(session.id, "Hello")

        ack = await anext(events)

        assert ack.type == "ack"
        assert ack.message is not None
        assert ack.message.content == "Hello"
        assert generator.stream_calls == []
        stored = await session_manager.get_session(session.id)
        assert [m.content for m in stored.state.conversation_history] == ["Hello"]

        rest = [event async for event in events]
        assert [e.type for e in rest] == ["chunk", "chunk", "chunk", "complete"]
        assert "".join(e.content or "" for e in rest if e.type == "chunk") == "Tell me more "

    async def test_reply_prompt_includes_history(
        self,
        conversation_service: ConversationService,
        session_manager: SessionManager,
        generator: ScriptedGenerator,
    ) -> None:
        session = await session_manager.create_session()
        await conversation_service.handle_turn(session.id, "First message")
        await conversation_service.handle_turn(session.id, "Second message")

        prompt = generator.stream_calls[1]
        assert prompt[0].role == "system"
        assert [m.content for m in prompt[1:] if m.role == "user"] == ["First message", "Second message"]


class TestTurnPolicy:
    async def test_rejects_abandoned_session(
        self,
        conversation_service: ConversationService,
        session_manager: SessionManager,
    ) -> None:
        session = await session_manager.create_session()
        await session_manager.abandon_session(session.id)

        with pytest.raises(SessionClosedError) as exc_info:
            await conversation_service.handle_turn(session.id, "Hello?")
        assert exc_info.value.status == "abandoned"

    @pytest.mark.parametrize("content", ["", "   ", "x" * 10001])
    async def test_rejects_invalid_content(
        self,
        conversation_service: ConversationService,
        session_manager: SessionManager,
        content: str,
    ) -> None:
        session = await session_manager.create_session()
        with pytest.raises(InputValidationError):
            await conversation_service.handle_turn(session.id, content)

    async def test_unknown_session(self, conversation_service: ConversationService) -> None:
        with pytest.raises(SessionNotFoundError):
            await conversation_service.handle_turn("nonexistent", "Hello")


class TestTurnFailures:
    async def test_reply_failure_uses_fallback(
        self,
        conversation_service: ConversationService,
        session_manager: SessionManager,
        generator: ScriptedGenerator,
    ) -> None:
        session = await session_manager.create_session()
        generator.replies.append(GeneratorError("provider down"))

        result = await conversation_service.handle_turn(session.id, "Hello")

        assert result.assistant_message.content == FALLBACK_REPLY
        stored = await session_manager.get_session(session.id)
        assert len(stored.state.conversation_history) == 2

    async def test_merge_failure_keeps_turn(
        self,
        conversation_service: ConversationService,
        session_manager: SessionManager,
    ) -> None:
        # completionsが空なので生成器は失敗する
        session = await session_manager.create_session()

        result = await conversation_service.handle_turn(session.id, "Hello")

        assert result.spec_updated is False
        assert result.specification is None
        stored = await session_manager.get_session(session.id)
        assert len(stored.state.conversation_history) == 2
        assert stored.state.specification is None

    async def test_append_failure_preserves_input(
        self,
        clock: FakeClock,
        progress_tracker: ProgressTracker,
        generator: ScriptedGenerator,
    ) -> None:
        store = FailingMessageStore(clock=clock)
        manager = SessionManager(store, clock=clock)
        service = ConversationService(
            manager, SpecificationMergeEngine(generator, progress_tracker, clock), progress_tracker, generator
        )
        session = await manager.create_session()

        with pytest.raises(StorageUnavailableError):
            await service.handle_turn(session.id, "Please don't lose this")

        errors = await manager.list_preserved_errors(session.id)
        assert errors[0]["user_input"] == "Please don't lose this"
        assert generator.stream_calls == []

    async def test_rate_limited_merge_keeps_reply(
        self,
        clock: FakeClock,
        session_manager: SessionManager,
        progress_tracker: ProgressTracker,
        generator: ScriptedGenerator,
    ) -> None:
        async def no_sleep(seconds: float) -> None:
            return None

        limited = RateLimitedGenerator(
            generator, RateLimiter(max_requests=1), max_attempts=1, sleep=no_sleep
        )
        service = ConversationService(
            session_manager, SpecificationMergeEngine(limited, progress_tracker, clock), progress_tracker, limited
        )
        session = await session_manager.create_session()
        generator.replies.append("Sure")

        result = await service.handle_turn(session.id, "Hello")

        assert result.assistant_message.content == "Sure"
        assert result.spec_updated is False
        assert generator.complete_calls == []


class TestFinalize:
    async def test_finalize_persists_new_version(
        self,
        conversation_service: ConversationService,
        session_manager: SessionManager,
        generator: ScriptedGenerator,
    ) -> None:
        session = await session_manager.create_session()
        generator.completions.append(merge_output(spec_payload(overview="dog app")))
        await conversation_service.handle_turn(session.id, "I want a dog app")
        generator.completions.append(merge_output(spec_payload(overview="A booking app for dog walkers")))

        spec = await conversation_service.finalize(session.id)

        assert spec.version == 2
        stored = await session_manager.get_session(session.id)
        assert stored.state.specification is not None
        assert stored.state.specification.plain_english_summary.overview == "A booking app for dog walkers"

    async def test_finalize_without_specification(
        self,
        conversation_service: ConversationService,
        session_manager: SessionManager,
    ) -> None:
        session = await session_manager.create_session()
        with pytest.raises(InputValidationError):
            await conversation_service.finalize(session.id)
