"""セッション操作のMCPツール定義。"""

from typing import Any

from fastmcp import FastMCP
from pydantic import ValidationError

from specwizard.models.errors import SpecWizardError
from specwizard.models.session import SessionState
from specwizard.services.progress import ProgressTracker
from specwizard.services.session import SessionManager
from specwizard.tools.common import error_response


def register_session_tools(mcp: FastMCP, session_manager: SessionManager, progress_tracker: ProgressTracker) -> None:
    """セッション関連のMCPツールを登録する。"""

    @mcp.tool()
    async def create_session() -> dict[str, Any]:
        """新しい仕様ヒアリングセッションを作成する。

        返却されるsession_idを以降のツール呼び出しで使用します。
        セッションは作成から30日で失効します。
        """
        try:
            session = await session_manager.create_session()
            return {
                "session_id": session.id,
                "status": session.status,
                "expires_at": session.expires_at.isoformat(),
            }
        except SpecWizardError as e:
            return error_response(e)

    @mcp.tool()
    async def get_session(session_id: str) -> dict[str, Any]:
        """セッションを取得する。会話履歴・最新の仕様書・進捗を含みます。

        Args:
            session_id: セッションID。
        """
        try:
            session = await session_manager.get_session(session_id)
            return session.model_dump(mode="json")
        except SpecWizardError as e:
            return error_response(e)

    @mcp.tool()
    async def restore_session(token: str) -> dict[str, Any]:
        """復元トークン（マジックリンク）からセッションを復元する。

        Args:
            token: generate_magic_linkで発行されたトークン。
        """
        try:
            session = await session_manager.restore_session_from_magic_link(token)
            return session.model_dump(mode="json")
        except SpecWizardError as e:
            return error_response(e)

    @mcp.tool()
    async def save_session_state(session_id: str, state: dict[str, Any]) -> dict[str, Any]:
        """クライアントが保持するセッション状態を保存する。

        未保存の発言と、保存済みより新しいバージョンの仕様書のみが書き込まれます。
        同じ状態を何度送っても結果は変わりません。

        Args:
            session_id: セッションID。
            state: conversation_history, specification, progress, user_info を持つ状態。
        """
        try:
            parsed = SessionState.model_validate(state)
        except ValidationError as e:
            return {
                "error": "InputValidationError",
                "message": "Invalid session state",
                "errors": [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()],
            }
        try:
            session = await session_manager.save_session_state(session_id, parsed)
            spec = session.state.specification
            return {
                "session_id": session.id,
                "message_count": len(session.state.conversation_history),
                "specification_version": spec.version if spec else None,
                "last_accessed_at": session.last_accessed_at.isoformat(),
            }
        except SpecWizardError as e:
            return error_response(e)

    @mcp.tool()
    async def abandon_session(session_id: str) -> dict[str, Any]:
        """セッションを放棄する。データは保持され、以後の発言は受け付けません。

        Args:
            session_id: セッションID。
        """
        try:
            session = await session_manager.abandon_session(session_id)
            return {"session_id": session.id, "status": session.status}
        except SpecWizardError as e:
            return error_response(e)

    @mcp.tool()
    async def generate_magic_link(session_id: str) -> dict[str, Any]:
        """セッション復元用のトークンを発行する。以前のトークンは無効になります。

        Args:
            session_id: セッションID。
        """
        try:
            token = await session_manager.generate_magic_link(session_id)
            return {"session_id": session_id, "token": token}
        except SpecWizardError as e:
            return error_response(e)

    @mcp.tool()
    async def get_progress(session_id: str) -> dict[str, Any]:
        """仕様書の網羅状況（チェックリスト・完成率・複雑度）を取得する。

        Args:
            session_id: セッションID。
        """
        try:
            session = await session_manager.get_session(session_id)
            return progress_tracker.derive(session.state.specification).model_dump(mode="json")
        except SpecWizardError as e:
            return error_response(e)
