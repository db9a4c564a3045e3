"""テスト用の時計・生成器・仕様書JSONのヘルパー。"""

import json
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from typing import Any

from specwizard.generator.base import PromptMessage
from specwizard.models.errors import GeneratorError


class FakeClock:
    """テストから進められる時計。"""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2025, 1, 15, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class ScriptedGenerator:
    """キューに積んだ出力を順に返す生成器。

    completeはマージ用、streamは応答用のキューを使う。キューの要素が
    例外の場合はそれを送出する。completeのキューが空の場合は生成器の失敗、
    streamのキューが空の場合は既定の質問を返す。
    """

    def __init__(self) -> None:
        self.completions: list[str | Exception] = []
        self.replies: list[str | Exception] = []
        self.complete_calls: list[list[PromptMessage]] = []
        self.stream_calls: list[list[PromptMessage]] = []

    async def complete(
        self,
        messages: list[PromptMessage],
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str:
        self.complete_calls.append(messages)
        if not self.completions:
            raise GeneratorError("No scripted completion")
        item = self.completions.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def stream(
        self,
        messages: list[PromptMessage],
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> AsyncIterator[str]:
        self.stream_calls.append(messages)
        item = self.replies.pop(0) if self.replies else "Could you tell me more?"
        if isinstance(item, Exception):
            raise item
        for word in item.split(" "):
            yield word + " "


def merge_output(spec: dict[str, Any], corrections: list[dict[str, Any]] | None = None) -> str:
    """生成器がマージ時に返すJSONを組み立てる。"""
    return json.dumps({"spec": spec, "missingSections": [], "corrections": corrections or []})


def spec_payload(
    overview: str = "",
    target_users: str = "",
    key_features: list[str] | None = None,
    flows: list[str] | None = None,
    requirements: list[dict[str, Any]] | None = None,
    glossary: dict[str, str] | None = None,
) -> dict[str, Any]:
    """camelCaseの仕様書JSONを組み立てる。"""
    return {
        "plainEnglishSummary": {
            "overview": overview,
            "targetUsers": target_users,
            "keyFeatures": key_features or [],
            "flows": flows or [],
            "rulesAndConstraints": [],
            "nonFunctional": [],
            "integrations": [],
            "mvpDefinition": {"included": [], "excluded": []},
        },
        "formalPRD": {
            "introduction": "",
            "glossary": glossary or {},
            "requirements": requirements or [],
            "nonFunctionalRequirements": [],
        },
    }
