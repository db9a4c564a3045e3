"""会話ターンのMCPツール定義。"""

from typing import Any

from fastmcp import FastMCP

from specwizard.models.errors import SpecWizardError
from specwizard.services.conversation import ConversationService
from specwizard.tools.common import client_identity, error_response


def register_conversation_tools(mcp: FastMCP, conversation_service: ConversationService) -> None:
    """会話関連のMCPツールを登録する。"""

    @mcp.tool()
    async def send_message(session_id: str, content: str) -> dict[str, Any]:
        """利用者の発言を送信し、アシスタントの応答と更新後の仕様書を受け取る。

        発言は応答生成より先に保存されます。応答生成や仕様書の更新に
        失敗しても発言は失われません。

        Args:
            session_id: セッションID。
            content: 利用者の発言（1〜10000文字）。
        """
        try:
            result = await conversation_service.handle_turn(
                session_id, content, identity=client_identity(session_id)
            )
            return {
                "message_id": result.user_message.id,
                "reply": result.assistant_message.content,
                "spec_updated": result.spec_updated,
                "specification": result.specification.model_dump(mode="json") if result.specification else None,
                "progress": result.progress.model_dump(mode="json") if result.progress else None,
            }
        except SpecWizardError as e:
            return error_response(e)

    @mcp.tool()
    async def finalize_specification(session_id: str) -> dict[str, Any]:
        """提出前に仕様書の文言を整える。新しい事実は追加されません。

        Args:
            session_id: セッションID。
        """
        try:
            spec = await conversation_service.finalize(session_id, identity=client_identity(session_id))
            return spec.model_dump(mode="json")
        except SpecWizardError as e:
            return error_response(e)
