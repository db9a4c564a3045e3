"""外部生成器（テキスト補完）のインターフェース。"""

from collections.abc import AsyncIterator
from typing import Literal, Protocol

from pydantic import BaseModel


class PromptMessage(BaseModel):
    """生成器に渡すプロンプトの1メッセージ。"""

    role: Literal["system", "user", "assistant"]
    content: str


class TextGenerator(Protocol):
    """「プロンプトを渡してテキストを受け取る」能力。

    失敗はすべてGeneratorErrorとして送出する。
    """

    async def complete(
        self,
        messages: list[PromptMessage],
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str: ...

    def stream(
        self,
        messages: list[PromptMessage],
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> AsyncIterator[str]: ...
