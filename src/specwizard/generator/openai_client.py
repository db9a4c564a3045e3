"""OpenAI互換エンドポイントを利用する生成器。"""

import logging
from collections.abc import AsyncIterator

import openai
from openai import AsyncOpenAI

from specwizard.generator.base import PromptMessage
from specwizard.models.errors import GeneratorError

logger = logging.getLogger(__name__)


class OpenAIGenerator:
    """Chat Completions APIでテキストを生成する。"""

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        base_url: str | None = None,
        timeout: float = 60.0,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout
        self._model = model
        # クライアント（遅延初期化）
        self._client: AsyncOpenAI | None = None

    def _get_client(self) -> AsyncOpenAI:
        """クライアントを遅延初期化して返す。"""
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._api_key or None,
                base_url=self._base_url,
                timeout=self._timeout,
                max_retries=0,
            )
        return self._client

    async def complete(
        self,
        messages: list[PromptMessage],
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str:
        """補完結果の全文を返す。"""
        try:
            response = await self._get_client().chat.completions.create(
                model=self._model,
                messages=[m.model_dump() for m in messages],  # type: ignore[misc]
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.OpenAIError as e:
            logger.error("Completion request to %s failed: %s", self._model, e)
            raise GeneratorError(f"Completion failed: {e}") from e
        if not response.choices or response.choices[0].message.content is None:
            raise GeneratorError("Completion returned no content")
        return response.choices[0].message.content

    async def stream(
        self,
        messages: list[PromptMessage],
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> AsyncIterator[str]:
        """補完結果をチャンク単位で逐次返す。"""
        try:
            response = await self._get_client().chat.completions.create(
                model=self._model,
                messages=[m.model_dump() for m in messages],  # type: ignore[misc]
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
            )
            async for chunk in response:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        except openai.OpenAIError as e:
            logger.error("Streaming request to %s failed: %s", self._model, e)
            raise GeneratorError(f"Streaming completion failed: {e}") from e
