"""仕様ヒアリングのMCPプロンプト定義。"""

from fastmcp import FastMCP


def register_interview_prompts(mcp: FastMCP) -> None:
    """仕様ヒアリング関連のMCPプロンプトを登録する。"""

    @mcp.prompt()
    async def start_interview() -> str:
        """新しい仕様ヒアリングを開始するためのプロンプト。

        セッション作成から会話、提出までのフローをガイドします。
        """
        return (
            "作りたいソフトウェアについての仕様ヒアリングを開始します。\n\n"
            "## 手順\n\n"
            "1. `create_session` ツールでセッションを作成してください。\n"
            "2. **作成されたセッションID（`session_id`）を利用者に必ず提示してください。**\n"
            "3. 利用者の発言をそのまま `send_message` に渡し、返却された `reply` を利用者に伝えてください。\n"
            "4. `get_progress` で未網羅のセクション（`missing_sections`）を確認できます。\n"
            "5. 必須セクションが揃ったら `finalize_specification` で文言を整えてください。\n"
            "6. 利用者の氏名・メールアドレス・電話番号を聞き、`submit_specification` で提出してください。\n\n"
            "## 注意事項\n\n"
            "- 中断する場合は `generate_magic_link` でトークンを発行し、利用者に伝えてください。\n"
            "- 提出後は受付番号（`reference_number`）を必ず伝えてください。\n"
            "- **ヒアリングは必ずチャット内の対話で行ってください。HTMLフォームやWebページを生成してはいけません。**\n"
        )

    @mcp.prompt()
    async def resume_interview(token: str) -> str:
        """中断した仕様ヒアリングを再開するためのプロンプト。

        Args:
            token: generate_magic_linkで発行された復元トークン。
        """
        return (
            "中断した仕様ヒアリングを再開します。\n\n"
            "## 手順\n\n"
            f"1. `restore_session` ツールにトークン `{token}` を渡してセッションを復元してください。\n"
            "2. 復元された会話履歴と仕様書を確認し、これまでの内容を利用者に簡単に振り返ってください。\n"
            "3. 未網羅のセクションについて `send_message` で会話を続けてください。\n\n"
            "## 注意事項\n\n"
            "- トークンが無効な場合は、新しいセッションを作成するよう案内してください。\n"
        )
