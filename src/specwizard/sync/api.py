"""同期コーディネーターが利用するセッションAPIの実装。"""

import json
from typing import Any, Protocol

import httpx

from fastmcp import Client
from fastmcp.exceptions import ClientError, ToolError

from specwizard.models.errors import (
    InvalidTokenError,
    SessionNotFoundError,
    SpecWizardError,
    StorageUnavailableError,
)
from specwizard.models.session import Session, SessionState
from specwizard.services.session import SessionManager


class SessionApi(Protocol):
    """レプリカの押し出し・取り込みに使うサーバー側の操作。"""

    async def create_session(self) -> Session: ...

    async def get_session(self, session_id: str) -> Session: ...

    async def restore_from_token(self, token: str) -> Session: ...

    async def save_session_state(self, session_id: str, state: SessionState) -> Session: ...


class LocalSessionApi:
    """同一プロセス内のSessionManagerを直接呼び出す。"""

    def __init__(self, session_manager: SessionManager) -> None:
        self._sessions = session_manager

    async def create_session(self) -> Session:
        return await self._sessions.create_session()

    async def get_session(self, session_id: str) -> Session:
        return await self._sessions.get_session(session_id)

    async def restore_from_token(self, token: str) -> Session:
        return await self._sessions.restore_session_from_magic_link(token)

    async def save_session_state(self, session_id: str, state: SessionState) -> Session:
        return await self._sessions.save_session_state(session_id, state)


def _raise_for_error(data: dict[str, Any], *, session_id: str = "", token: str = "") -> None:
    error = data.get("error")
    if error is None:
        return
    if error == "SessionNotFoundError":
        raise SessionNotFoundError(session_id)
    if error == "InvalidTokenError":
        raise InvalidTokenError(token)
    if error == "StorageUnavailableError":
        raise StorageUnavailableError(data.get("message", ""))
    raise SpecWizardError(f"{error}: {data.get('message', '')}")


class McpSessionApi:
    """MCPサーバーのツールを経由してセッションを操作する。

    clientにはFastMCPサーバー（インメモリ）またはサーバーURLを渡したClientを使う。
    """

    def __init__(self, client: Client) -> None:
        self._client = client

    async def _call(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        try:
            async with self._client:
                result = await self._client.call_tool(name, arguments, raise_on_error=False)
        except (ClientError, ToolError, httpx.TransportError, OSError, RuntimeError) as e:
            # 接続できない場合 fastmcp は RuntimeError を送出する
            raise StorageUnavailableError(f"Session API call {name} failed: {e}") from e
        if not result.content:
            raise StorageUnavailableError(f"Session API call {name} returned no content")
        return json.loads(result.content[0].text)  # type: ignore[union-attr]

    async def create_session(self) -> Session:
        data = await self._call("create_session", {})
        _raise_for_error(data)
        return await self.get_session(data["session_id"])

    async def get_session(self, session_id: str) -> Session:
        data = await self._call("get_session", {"session_id": session_id})
        _raise_for_error(data, session_id=session_id)
        return Session.model_validate(data)

    async def restore_from_token(self, token: str) -> Session:
        data = await self._call("restore_session", {"token": token})
        _raise_for_error(data, token=token)
        return Session.model_validate(data)

    async def save_session_state(self, session_id: str, state: SessionState) -> Session:
        data = await self._call(
            "save_session_state",
            {"session_id": session_id, "state": state.model_dump(mode="json")},
        )
        _raise_for_error(data, session_id=session_id)
        return await self.get_session(session_id)
