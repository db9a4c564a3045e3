"""会話の1ターンを処理するサービス。

ユーザー発言の永続化、応答のストリーミング、仕様書マージ、進捗導出を
1つの流れとしてまとめる。
"""

import logging
from collections.abc import AsyncIterator
from typing import Literal

from pydantic import BaseModel

from specwizard.generator.base import PromptMessage, TextGenerator
from specwizard.models.errors import (
    GeneratorError,
    InputValidationError,
    RateLimitedError,
    SessionClosedError,
    StorageUnavailableError,
)
from specwizard.models.session import MAX_MESSAGE_LENGTH, Message, MessageMetadata, SessionState
from specwizard.models.specification import ProgressState, Specification
from specwizard.services.merge import FinalizeRequest, MergeResult, SpecificationMergeEngine, UpdateRequest
from specwizard.services.progress import ProgressTracker
from specwizard.services.rate_limit import RateLimitedGenerator
from specwizard.services.session import SessionManager

logger = logging.getLogger(__name__)

# 応答生成に渡す直近の発言数
REPLY_HISTORY_MESSAGES = 10

FALLBACK_REPLY = (
    "Sorry, I'm having trouble responding right now. "
    "Your message has been saved, so could you tell me a little more while I catch up?"
)

_SYSTEM_PROMPT = """You are a friendly product consultant helping a non-technical business owner
describe the software they want built. Ask one clear question at a time, in plain English,
and never use technical jargon. Build on what the user has already told you and do not ask
about things that are already captured in the specification below."""


class TurnEvent(BaseModel):
    """ストリーミング中に送出するイベント。"""

    type: Literal["ack", "chunk", "complete"]
    message: Message | None = None
    content: str | None = None
    specification: Specification | None = None
    progress: ProgressState | None = None


class TurnResult(BaseModel):
    """1ターンの処理結果。"""

    user_message: Message
    assistant_message: Message
    specification: Specification | None
    progress: ProgressState | None
    spec_updated: bool


def _validate_content(content: str) -> None:
    errors: list[str] = []
    if not content.strip():
        errors.append("message must not be empty")
    if len(content) > MAX_MESSAGE_LENGTH:
        errors.append(f"message must be at most {MAX_MESSAGE_LENGTH} characters")
    if errors:
        raise InputValidationError("Invalid message", errors)


def _build_system_prompt(spec: Specification | None, progress: ProgressState | None) -> str:
    parts = [_SYSTEM_PROMPT]
    if spec is not None and spec.version > 0:
        summary = spec.plain_english_summary
        captured = [f"Overview: {summary.overview}"] if summary.overview else []
        if summary.target_users:
            captured.append(f"Target users: {summary.target_users}")
        captured += [f"Feature: {f}" for f in summary.key_features]
        captured += [f"Flow: {f}" for f in summary.flows]
        if captured:
            parts.append("ALREADY CAPTURED:\n" + "\n".join(f"- {c}" for c in captured))
    if progress is not None and progress.missing_sections:
        parts.append("STILL MISSING (ask about the first one next): " + ", ".join(progress.missing_sections))
    return "\n\n".join(parts)


class ConversationService:
    """会話ターンの受付から仕様書更新までを処理する。"""

    def __init__(
        self,
        session_manager: SessionManager,
        merge_engine: SpecificationMergeEngine,
        progress_tracker: ProgressTracker,
        generator: TextGenerator,
        *,
        merge_window: int = 6,
    ) -> None:
        self._sessions = session_manager
        self._merge = merge_engine
        self._progress = progress_tracker
        self._generator = generator
        self._merge_window = merge_window

    def _generator_for(self, identity: str) -> TextGenerator:
        if isinstance(self._generator, RateLimitedGenerator):
            return self._generator.for_identity(identity)
        return self._generator

    async def _save(self, session_id: str, state: SessionState, user_input: str | None) -> None:
        try:
            await self._sessions.save_session_state(session_id, state)
        except StorageUnavailableError as e:
            await self._sessions.preserve_error_state(session_id, e, user_input, state)
            raise

    async def stream_turn(
        self,
        session_id: str,
        content: str,
        *,
        identity: str | None = None,
    ) -> AsyncIterator[TurnEvent]:
        """ユーザー発言を処理し、イベントを逐次送出する。

        発言の永続化が完了した時点で生成器を呼ぶ前に ``ack`` を送出し、
        応答の断片ごとに ``chunk``、仕様書更新後に ``complete`` を送出する。

        Args:
            session_id: セッションID。
            content: ユーザー発言。
            identity: レート制限の単位。省略時はセッションID。

        Raises:
            SessionNotFoundError: セッションが存在しない、または有効期限切れの場合。
            SessionClosedError: セッションがアクティブでない場合。
            InputValidationError: 発言が空、または長すぎる場合。
            StorageUnavailableError: 発言を永続化できなかった場合（入力は退避済み）。
            RateLimitedError: 応答生成がレート制限を超過した場合（発言は保存済み）。
        """
        _validate_content(content)
        session = await self._sessions.get_session(session_id)
        if session.status != "active":
            raise SessionClosedError(session_id, session.status)

        state = session.state
        user_message = Message(role="user", content=content)
        history = [*state.conversation_history, user_message]
        await self._save(session_id, SessionState(conversation_history=history), content)
        yield TurnEvent(type="ack", message=user_message)

        generator = self._generator_for(identity or session_id)
        prompt = [
            PromptMessage(role="system", content=_build_system_prompt(state.specification, state.progress)),
            *(PromptMessage(role=m.role, content=m.content) for m in history[-REPLY_HISTORY_MESSAGES:]),
        ]
        parts: list[str] = []
        try:
            async for chunk in generator.stream(prompt):
                parts.append(chunk)
                yield TurnEvent(type="chunk", content=chunk)
        except GeneratorError as e:
            logger.warning("Reply generation failed for session %s: %s", session_id, e)
            if not parts:
                parts.append(FALLBACK_REPLY)
                yield TurnEvent(type="chunk", content=FALLBACK_REPLY)
        reply = "".join(parts).strip()[:MAX_MESSAGE_LENGTH] or FALLBACK_REPLY

        assistant_message = Message(role="assistant", content=reply)
        history.append(assistant_message)
        request = UpdateRequest(
            current_spec=state.specification or Specification(),
            last_messages=history[-self._merge_window :],
            is_first_run=state.specification is None,
        )
        try:
            result = await self._merge.synthesize(request, generator=generator)
        except RateLimitedError as e:
            # 応答は保存し、仕様書の更新だけを見送る
            logger.warning("Specification merge skipped for session %s: %s", session_id, e)
            result = MergeResult(spec=request.current_spec, missing_sections=[], applied=False)
        if result.applied:
            specification: Specification | None = result.spec
            progress: ProgressState | None = self._progress.derive(result.spec)
        else:
            specification, progress = state.specification, state.progress

        assistant_message = assistant_message.model_copy(
            update={"metadata": MessageMetadata(spec_updated=result.applied, progress_updated=result.applied)}
        )
        history[-1] = assistant_message
        await self._save(
            session_id,
            SessionState(
                conversation_history=history,
                specification=specification if result.applied else None,
                progress=progress,
            ),
            None,
        )
        yield TurnEvent(type="complete", message=assistant_message, specification=specification, progress=progress)

    async def handle_turn(self, session_id: str, content: str, *, identity: str | None = None) -> TurnResult:
        """ストリーミングせずに1ターンを処理する。"""
        user_message: Message | None = None
        async for event in self.stream_turn(session_id, content, identity=identity):
            if event.type == "ack":
                user_message = event.message
            elif event.type == "complete":
                return TurnResult(
                    user_message=user_message,
                    assistant_message=event.message,
                    specification=event.specification,
                    progress=event.progress,
                    spec_updated=bool(event.message.metadata and event.message.metadata.spec_updated),
                )
        raise RuntimeError("Turn ended without a complete event")

    async def finalize(self, session_id: str, *, identity: str | None = None) -> Specification:
        """提出前に仕様書の文言を整え、結果を保存する。

        Raises:
            SessionNotFoundError: セッションが存在しない、または有効期限切れの場合。
            InputValidationError: 仕様書がまだ生成されていない場合。
        """
        session = await self._sessions.get_session(session_id)
        current = session.state.specification
        if current is None:
            raise InputValidationError("Cannot finalize", ["specification has not been generated yet"])

        result = await self._merge.synthesize(
            FinalizeRequest(current_spec=current),
            generator=self._generator_for(identity or session_id),
        )
        if not result.applied:
            logger.warning("Finalize left session %s at v%d", session_id, current.version)
            return current
        await self._save(
            session_id,
            SessionState(specification=result.spec, progress=self._progress.derive(result.spec)),
            None,
        )
        return result.spec
