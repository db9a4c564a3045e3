"""クライアント側で楽観的レプリカを保持し、サーバーと同期する。

同期は常に全状態の冪等なプッシュで行う。同一セッションを複数の書き手が
同時に編集した場合は最後に届いたプッシュが勝つ（解決はしない）。
"""

import asyncio
import contextlib
import logging
from datetime import datetime

from pydantic import BaseModel, Field

from specwizard.config import ServerConfig
from specwizard.models.errors import SpecWizardError
from specwizard.models.session import Message, Session, SessionState
from specwizard.models.specification import ProgressState, Specification
from specwizard.storage.base import Clock, utc_now
from specwizard.sync.api import SessionApi

logger = logging.getLogger(__name__)


class ReplicaState(BaseModel):
    """クライアント側のセッション状態の複製。"""

    session_id: str | None = None
    conversation_history: list[Message] = Field(default_factory=list)
    specification: Specification | None = None
    progress: ProgressState | None = None
    last_synced_at: datetime | None = None
    syncing: bool = False
    online: bool = True
    dirty: bool = False


class SyncCoordinator:
    """レプリカへの楽観的な反映と、サーバーへのプッシュ・プルを担う。

    プッシュの契機は発言の追加直後と一定間隔のバックストップの2つ。
    同時に実行中のプッシュは高々1つで、実行中に要求されたプッシュは
    破棄し、次の契機で追いつく。オフライン中はプッシュを止め、
    復帰時に即座にプッシュする。
    """

    def __init__(self, api: SessionApi, *, interval_seconds: float = 30.0, clock: Clock = utc_now) -> None:
        self._api = api
        self._interval = interval_seconds
        self._clock = clock
        self._replica = ReplicaState()
        # 変更のたびに増える世代番号（プッシュ中の変更を取りこぼさないため）
        self._generation = 0
        self._task: asyncio.Task[None] | None = None

    @classmethod
    def from_config(cls, api: SessionApi, config: ServerConfig) -> "SyncCoordinator":
        """サーバー設定のバックストップ間隔でコーディネーターを作成する。"""
        return cls(api, interval_seconds=config.sync_interval_seconds)

    @property
    def state(self) -> ReplicaState:
        return self._replica.model_copy(deep=True)

    def _touch(self) -> None:
        self._generation += 1
        self._replica.dirty = True

    def _load(self, session: Session) -> None:
        online = self._replica.online
        self._replica = ReplicaState(
            session_id=session.id,
            conversation_history=list(session.state.conversation_history),
            specification=session.state.specification,
            progress=session.state.progress,
            last_synced_at=self._clock(),
            online=online,
        )
        self._generation += 1

    async def start_session(self) -> str:
        """サーバーに新しいセッションを作成し、空のレプリカを用意する。"""
        session = await self._api.create_session()
        self._load(session)
        return session.id

    async def add_message(self, message: Message) -> None:
        """発言をレプリカに追加し、即座にプッシュする。"""
        self._replica.conversation_history.append(message)
        self._touch()
        await self.sync_to_server()

    async def update_specification(self, specification: Specification) -> bool:
        """仕様書を差し替える。現在より新しいバージョンのみ受け付ける。

        Returns:
            差し替えた場合True。
        """
        current = self._replica.specification
        if current is not None and specification.version <= current.version:
            logger.debug("Ignored specification v%d (replica has v%d)", specification.version, current.version)
            return False
        self._replica.specification = specification
        self._touch()
        return True

    async def update_progress(self, progress: ProgressState) -> None:
        self._replica.progress = progress
        self._touch()

    async def restore_from_server(self, session_id: str) -> ReplicaState:
        """サーバーの状態でレプリカを置き換える。

        Raises:
            SessionNotFoundError: セッションが存在しない、または有効期限切れの場合。
        """
        self._load(await self._api.get_session(session_id))
        logger.info("Restored replica for session %s", session_id)
        return self.state

    async def restore_from_token(self, token: str) -> ReplicaState:
        """復元トークンでサーバーの状態を取り込む。

        Raises:
            InvalidTokenError: トークンが存在しない、または失効している場合。
        """
        self._load(await self._api.restore_from_token(token))
        logger.info("Restored replica for session %s from token", self._replica.session_id)
        return self.state

    def clear(self) -> None:
        """レプリカを空にする（新しいセッションを始める前など）。"""
        self._replica = ReplicaState(online=self._replica.online)
        self._generation += 1

    async def sync_to_server(self) -> bool:
        """レプリカ全体をサーバーにプッシュする。

        Returns:
            プッシュが成功した場合True。オフライン、セッション未作成、
            実行中のプッシュがある場合、失敗した場合はFalse。
        """
        replica = self._replica
        if replica.session_id is None or not replica.online:
            return False
        if replica.syncing:
            logger.debug("Push for session %s dropped, another push is in flight", replica.session_id)
            return False

        replica.syncing = True
        generation = self._generation
        session_id = replica.session_id
        state = SessionState(
            conversation_history=list(replica.conversation_history),
            specification=replica.specification,
            progress=replica.progress,
        )
        try:
            saved = await self._api.save_session_state(session_id, state)
        except SpecWizardError as e:
            logger.warning("Push for session %s failed, will retry: %s", session_id, e)
            return False
        except Exception:
            logger.exception("Push for session %s failed unexpectedly, will retry", session_id)
            return False
        finally:
            replica.syncing = False

        if self._replica is replica:
            replica.last_synced_at = self._clock()
            replica.dirty = self._generation != generation
            self._adopt_newer_specification(saved)
        return True

    def _adopt_newer_specification(self, saved: Session) -> None:
        # 他の書き手が保存したより新しい仕様書のみ取り込む
        server_spec = saved.state.specification
        current = self._replica.specification
        if server_spec is None or (current is not None and server_spec.version <= current.version):
            return
        self._replica.specification = server_spec
        self._replica.progress = saved.state.progress
        logger.info("Adopted specification v%d from server for session %s", server_spec.version, saved.id)

    async def set_online(self, online: bool) -> None:
        """接続状態を切り替える。オンライン復帰時は即座にプッシュする。"""
        was_online = self._replica.online
        self._replica.online = online
        if online and not was_online:
            logger.info("Connectivity restored, pushing replica")
            await self.sync_to_server()

    async def _run_interval(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            if not self._replica.dirty:
                continue
            try:
                await self.sync_to_server()
            except Exception:
                logger.exception("Backstop push failed for session %s", self._replica.session_id)

    def start(self) -> None:
        """一定間隔のバックストッププッシュを開始する。"""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run_interval())

    async def stop(self) -> None:
        """バックストップを止め、未送信の変更があれば最後に1度プッシュする。"""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._replica.dirty:
            await self.sync_to_server()
