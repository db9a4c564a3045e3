"""セッションのライフサイクルを管理するサービス。"""

import logging
import secrets
import uuid
from datetime import timedelta
from typing import Any

from specwizard.models.errors import InvalidTokenError, SessionNotFoundError, SpecWizardError
from specwizard.models.session import Message, Session, SessionState
from specwizard.storage import keys
from specwizard.storage.base import Clock, RecordStore, utc_now

logger = logging.getLogger(__name__)

# 復元トークンのバイト長（URLセーフBase64で43文字）
MAGIC_LINK_TOKEN_BYTES = 32


class SessionManager:
    """セッションの作成・取得・保存・復元・放棄を行う。

    発言と仕様書バージョンは別々のレコードとして書き込む。
    複数キーのトランザクションは前提としないため、保存は常に
    冪等な全状態プッシュとして扱い、欠けた片方は次回の保存で補われる。
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        session_ttl_days: int = 30,
        magic_link_ttl_days: int = 30,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._session_ttl = timedelta(days=session_ttl_days)
        self._magic_link_ttl = timedelta(days=magic_link_ttl_days)
        self._clock = clock

    async def _load_metadata(self, session_id: str) -> Session:
        record = await self._store.get(keys.session_pk(session_id), keys.METADATA_SK)
        if record is None:
            raise SessionNotFoundError(session_id)
        session = keys.record_to_session(record)
        if session.is_expired(self._clock()):
            raise SessionNotFoundError(session_id)
        return session

    async def _load_messages(self, session_id: str) -> list[Message]:
        records = await self._store.query(keys.session_pk(session_id), keys.MESSAGE_PREFIX)
        return [keys.record_to_message(r) for r in records]

    async def _load_state(self, session: Session) -> SessionState:
        state = SessionState(
            conversation_history=await self._load_messages(session.id),
            user_info=session.state.user_info,
        )
        latest = await self._store.query(
            keys.session_pk(session.id),
            keys.SPEC_PREFIX,
            descending=True,
            limit=1,
        )
        if latest:
            state.specification, state.progress = keys.record_to_specification(latest[0])
        return state

    async def create_session(self) -> Session:
        """新しいセッションを作成する。

        有効期限は作成時刻から固定で、アクセスしても延長されない。

        Returns:
            作成されたセッション。
        """
        now = self._clock()
        session = Session(
            id=str(uuid.uuid4()),
            created_at=now,
            last_accessed_at=now,
            expires_at=now + self._session_ttl,
        )
        await self._store.put(keys.session_to_record(session))
        logger.info("Created session %s (expires %s)", session.id, session.expires_at.isoformat())
        return session

    async def get_session(self, session_id: str) -> Session:
        """会話履歴と最新の仕様書を復元したセッションを取得する。

        Raises:
            SessionNotFoundError: セッションが存在しない、または有効期限切れの場合。
        """
        session = await self._load_metadata(session_id)
        session.state = await self._load_state(session)
        return session

    async def save_session_state(self, session_id: str, state: SessionState) -> Session:
        """セッション状態を保存する。

        未保存の発言を先に書き込み、その後に仕様書を書き込む。これにより
        読み手が会話の末尾より新しい仕様書を観測することはない。
        仕様書は保存済みの最新バージョンより新しい場合のみ書き込む。

        Args:
            session_id: セッションID。
            state: クライアントが保持する全状態。

        Returns:
            保存後のセッション。

        Raises:
            SessionNotFoundError: セッションが存在しない、または有効期限切れの場合。
        """
        session = await self._load_metadata(session_id)
        pk = keys.session_pk(session_id)

        stored_ids = {r.data.get("id") for r in await self._store.query(pk, keys.MESSAGE_PREFIX)}
        appended = 0
        for message in state.conversation_history:
            if message.id in stored_ids:
                continue
            await self._store.put(keys.message_to_record(session_id, message, session.expires_at))
            stored_ids.add(message.id)
            appended += 1

        spec = state.specification
        if spec is not None:
            latest = await self._store.query(pk, keys.SPEC_PREFIX, descending=True, limit=1)
            stored_version = keys.record_to_specification(latest[0])[0].version if latest else None
            if stored_version is None or spec.version > stored_version:
                await self._store.put(
                    keys.specification_to_record(session_id, spec, state.progress, session.expires_at)
                )
            elif spec.version < stored_version:
                logger.warning(
                    "Ignored stale specification v%d for session %s (stored v%d)",
                    spec.version,
                    session_id,
                    stored_version,
                )

        if state.user_info is not None:
            session.state.user_info = state.user_info
        session.last_accessed_at = self._clock()
        await self._store.put(keys.session_to_record(session))
        logger.debug("Saved session %s (%d new messages)", session_id, appended)

        session.state = await self._load_state(session)
        return session

    async def generate_magic_link(self, session_id: str) -> str:
        """セッション復元用のトークンを発行する。

        以前のトークンは上書きされ、以後は解決できなくなる。

        Returns:
            新しいトークン。

        Raises:
            SessionNotFoundError: セッションが存在しない、または有効期限切れの場合。
        """
        session = await self._load_metadata(session_id)
        token = secrets.token_urlsafe(MAGIC_LINK_TOKEN_BYTES)
        now = self._clock()
        session.magic_link_token = token
        session.magic_link_expires_at = now + self._magic_link_ttl
        session.last_accessed_at = now
        await self._store.put(keys.session_to_record(session))
        logger.info("Issued magic link for session %s", session_id)
        return token

    async def restore_session_from_magic_link(self, token: str) -> Session:
        """トークンからセッションを復元し、最終アクセス日時を更新する。

        Raises:
            InvalidTokenError: トークンが存在しない、失効済み、またはセッションが期限切れの場合。
        """
        record = await self._store.get_by_index(keys.magic_link_index(token))
        if record is None:
            raise InvalidTokenError(token)
        session = keys.record_to_session(record)
        now = self._clock()
        if (
            session.magic_link_token != token
            or session.magic_link_expires_at is None
            or now >= session.magic_link_expires_at
            or session.is_expired(now)
        ):
            raise InvalidTokenError(token)

        session.last_accessed_at = now
        await self._store.put(keys.session_to_record(session))
        session.state = await self._load_state(session)
        logger.info("Restored session %s from magic link", session.id)
        return session

    async def abandon_session(self, session_id: str) -> Session:
        """セッションを放棄状態にする。データは削除しない。

        既に放棄済みの場合は何もしない。提出済みのセッションは提出済みのまま残す。

        Raises:
            SessionNotFoundError: セッションが存在しない、または有効期限切れの場合。
        """
        session = await self._load_metadata(session_id)
        if session.status == "active":
            session.status = "abandoned"
            session.last_accessed_at = self._clock()
            await self._store.put(keys.session_to_record(session))
            logger.info("Abandoned session %s", session_id)
        elif session.status == "submitted":
            logger.warning("Session %s is already submitted, not abandoning", session_id)
        return session

    async def mark_submitted(self, session_id: str, submission_id: str) -> Session:
        """セッションを提出済みにし、提出IDを紐づける。"""
        session = await self._load_metadata(session_id)
        session.status = "submitted"
        session.submission_id = submission_id
        session.last_accessed_at = self._clock()
        await self._store.put(keys.session_to_record(session))
        return session

    async def preserve_error_state(
        self,
        session_id: str,
        error: BaseException,
        user_input: str | None = None,
        prior_state: SessionState | None = None,
    ) -> None:
        """障害発生時に試みていた内容を退避する。

        退避自体の失敗はログに残すのみで、呼び出し元には送出しない。
        """
        try:
            now = self._clock()
            record = keys.error_to_record(session_id, now, error, user_input, now + self._session_ttl)
            if prior_state is not None:
                record.data["prior_state"] = prior_state.model_dump(mode="json")
            await self._store.put(record)
            logger.warning("Preserved error state for session %s: %s", session_id, type(error).__name__)
        except Exception:
            logger.exception("Failed to preserve error state for session %s", session_id)

    async def list_preserved_errors(self, session_id: str) -> list[dict[str, Any]]:
        """退避済みのエラー状態を古い順に返す。"""
        records = await self._store.query(keys.session_pk(session_id), keys.ERROR_PREFIX)
        return [r.data for r in records]

    async def reconstruct_context_after_error(self, session_id: str) -> SessionState | None:
        """障害後に最後に永続化された状態を取得する。取得できなければNone。"""
        try:
            session = await self.get_session(session_id)
        except SpecWizardError as e:
            logger.warning("Could not reconstruct context for session %s: %s", session_id, e)
            return None
        return session.state
