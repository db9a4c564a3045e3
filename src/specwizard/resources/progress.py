"""進捗チェックリストのMCPリソース定義。"""

from pathlib import Path

import yaml
from fastmcp import FastMCP


def register_progress_resources(mcp: FastMCP, config_dir: Path) -> None:
    """進捗関連のMCPリソースを登録する。"""

    @mcp.resource("specwizard://progress/topics")
    async def progress_topics() -> str:
        """仕様書のチェックリスト定義を取得する。

        各トピックのID、名称、判定対象のフィールド、必須かどうかを返します。
        """
        topics_file = config_dir / "progress-topics.yaml"
        with open(topics_file, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return yaml.dump(data, allow_unicode=True, default_flow_style=False)
