"""会話から仕様書を組み立てるマージエンジン。

生成器が返す仕様書は毎回全体を書き換えるため、ここで単調非後退
（明示的な訂正以外で情報が消えないこと）を強制する。
"""

import json
import logging
import re
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Annotated, Literal, TypeVar

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_snake

from specwizard.generator.base import PromptMessage, TextGenerator
from specwizard.models.errors import GeneratorError
from specwizard.models.session import Message
from specwizard.models.specification import NFR, CamelModel, Requirement, Specification
from specwizard.services.merge_prompts import build_finalize_prompt, build_update_prompt
from specwizard.services.progress import ProgressTracker

logger = logging.getLogger(__name__)

# 生成器に渡す発言数の上限
MAX_WINDOW_MESSAGES = 20

_MERGE_TEMPERATURE = 0.3
_MERGE_MAX_TOKENS = 4000

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")

# 追加のみ許される文字列リスト（plain_english_summary配下）
_ADDITIVE_LISTS = (
    "key_features",
    "flows",
    "rules_and_constraints",
    "non_functional",
    "integrations",
)
_MVP_LISTS = ("included", "excluded")

_Item = TypeVar("_Item", Requirement, NFR)


class UpdateRequest(BaseModel):
    """新しい発言を取り込む更新リクエスト。"""

    mode: Literal["update"] = "update"
    current_spec: Specification
    last_messages: list[Message]
    is_first_run: bool = False


class FinalizeRequest(BaseModel):
    """提出前に文言を整える確定リクエスト。"""

    mode: Literal["finalize"] = "finalize"
    current_spec: Specification


MergeRequest = Annotated[UpdateRequest | FinalizeRequest, Field(discriminator="mode")]


class Correction(CamelModel):
    """生成器が訂正と判定した変更。"""

    field: str
    old: str
    new: str | None = None

    @property
    def field_key(self) -> str:
        """末尾のフィールド名（snake_case）。"formalPRD.requirements" は "requirements"。"""
        return to_snake(self.field.rsplit(".", 1)[-1])


class GeneratorOutput(CamelModel):
    """生成器が返すJSONの構造。"""

    spec: Specification
    missing_sections: list[str] = Field(default_factory=list)
    corrections: list[Correction] = Field(default_factory=list)


class MergeResult(BaseModel):
    """マージ結果。appliedがFalseの場合specは入力のまま。"""

    spec: Specification
    missing_sections: list[str]
    applied: bool


def _norm(text: str) -> str:
    return " ".join(text.split()).casefold()


def parse_generator_output(text: str) -> GeneratorOutput:
    """生成器の出力をパースする。Markdownのコードフェンスは取り除く。

    Raises:
        ValueError: JSONとして解釈できない、または構造が不正な場合。
    """
    content = _CODE_FENCE_RE.sub("", text.strip())
    return GeneratorOutput.model_validate(json.loads(content))


def _corrected(corrections: list[Correction], field: str) -> set[str]:
    return {_norm(c.old) for c in corrections if c.field_key == field}


def _is_refinement(old_key: str, new_key: str) -> bool:
    # "book walks" -> "book walks by date" は詳細化、"chat" -> "chatbot" は別項目
    return new_key == old_key or new_key.startswith(old_key + " ")


def _keep_list(old: list[str], new: list[str], corrected: set[str]) -> list[str]:
    result = list(new)
    present = [_norm(item) for item in new]
    for item in old:
        key = _norm(item)
        if key in corrected:
            continue
        if any(_is_refinement(key, p) for p in present):
            continue
        result.append(item)
    return result


def _refill_requirement(old: Requirement, new: Requirement) -> Requirement:
    return new.model_copy(
        update={
            "user_story": _keep_text(old.user_story, new.user_story),
            "acceptance_criteria": _keep_list(old.acceptance_criteria, new.acceptance_criteria, set()),
        }
    )


def _refill_nfr(old: NFR, new: NFR) -> NFR:
    return new.model_copy(update={"description": _keep_text(old.description, new.description)})


def _keep_by_id(
    old: list[_Item],
    new: list[_Item],
    corrected: set[str],
    refill: Callable[[_Item, _Item], _Item],
) -> list[_Item]:
    """idで突き合わせ、欠落した項目を戻し、空にされた内容を補う。訂正されたidはそのまま受け入れる。"""
    previous = {item.id: item for item in old}
    result = [
        item if item.id not in previous or _norm(item.id) in corrected else refill(previous[item.id], item)
        for item in new
    ]
    ids = {item.id for item in new}
    for item in old:
        if item.id not in ids and _norm(item.id) not in corrected:
            result.append(item)
    return result


def _keep_text(old: str, new: str) -> str:
    return new if new.strip() or not old.strip() else old


def enforce_non_regression(
    current: Specification,
    proposed: Specification,
    corrections: list[Correction],
) -> Specification:
    """更新モードの出力に対し、訂正されていない既存情報を復元する。"""
    spec = proposed.model_copy(deep=True)
    old_summary, summary = current.plain_english_summary, spec.plain_english_summary
    old_prd, prd = current.formal_prd, spec.formal_prd

    for name in _ADDITIVE_LISTS:
        corrected = _corrected(corrections, name)
        setattr(summary, name, _keep_list(getattr(old_summary, name), getattr(summary, name), corrected))
    for name in _MVP_LISTS:
        corrected = _corrected(corrections, name)
        setattr(
            summary.mvp_definition,
            name,
            _keep_list(getattr(old_summary.mvp_definition, name), getattr(summary.mvp_definition, name), corrected),
        )

    # 叙述フィールドは空の文章に後退させない
    summary.overview = _keep_text(old_summary.overview, summary.overview)
    summary.target_users = _keep_text(old_summary.target_users, summary.target_users)
    prd.introduction = _keep_text(old_prd.introduction, prd.introduction)

    prd.requirements = _keep_by_id(
        old_prd.requirements,
        prd.requirements,
        _corrected(corrections, "requirements"),
        _refill_requirement,
    )
    prd.non_functional_requirements = _keep_by_id(
        old_prd.non_functional_requirements,
        prd.non_functional_requirements,
        _corrected(corrections, "non_functional_requirements"),
        _refill_nfr,
    )
    glossary_corrected = _corrected(corrections, "glossary")
    for term, definition in old_prd.glossary.items():
        if _norm(term) in glossary_corrected:
            continue
        if not prd.glossary.get(term, "").strip():
            prd.glossary[term] = definition
    return spec


def _cap_list(old: list[str], new: list[str]) -> list[str]:
    if len(new) < len(old):
        return list(old)
    return new[: len(old)]


def _polish_requirement(old: Requirement, new: Requirement) -> Requirement:
    return new.model_copy(
        update={
            "user_story": _keep_text(old.user_story, new.user_story),
            "acceptance_criteria": _cap_list(old.acceptance_criteria, new.acceptance_criteria),
        }
    )


def enforce_no_new_facts(current: Specification, proposed: Specification) -> Specification:
    """確定モードの出力に対し、新しい事実の追加と既存情報の欠落を取り除く。"""
    spec = proposed.model_copy(deep=True)
    old_summary, summary = current.plain_english_summary, spec.plain_english_summary
    old_prd, prd = current.formal_prd, spec.formal_prd

    for name in _ADDITIVE_LISTS:
        setattr(summary, name, _cap_list(getattr(old_summary, name), getattr(summary, name)))
    for name in _MVP_LISTS:
        setattr(
            summary.mvp_definition,
            name,
            _cap_list(getattr(old_summary.mvp_definition, name), getattr(summary.mvp_definition, name)),
        )

    summary.overview = _keep_text(old_summary.overview, summary.overview)
    summary.target_users = _keep_text(old_summary.target_users, summary.target_users)
    prd.introduction = _keep_text(old_prd.introduction, prd.introduction)

    old_req_ids = {r.id for r in old_prd.requirements}
    prd.requirements = _keep_by_id(
        old_prd.requirements,
        [r for r in prd.requirements if r.id in old_req_ids],
        set(),
        _polish_requirement,
    )
    old_nfr_ids = {n.id for n in old_prd.non_functional_requirements}
    prd.non_functional_requirements = _keep_by_id(
        old_prd.non_functional_requirements,
        [n for n in prd.non_functional_requirements if n.id in old_nfr_ids],
        set(),
        _refill_nfr,
    )
    prd.glossary = {term: prd.glossary.get(term) or definition for term, definition in old_prd.glossary.items()}
    return spec


class SpecificationMergeEngine:
    """会話の新しいターンを既存の仕様書に畳み込む。"""

    def __init__(
        self,
        generator: TextGenerator,
        progress_tracker: ProgressTracker,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._generator = generator
        self._progress = progress_tracker
        self._clock = clock

    async def synthesize(
        self,
        request: UpdateRequest | FinalizeRequest,
        *,
        generator: TextGenerator | None = None,
    ) -> MergeResult:
        """リクエストのモードに応じて仕様書全体を生成し直す。

        生成器の失敗や解釈できない出力の場合は、入力の仕様書をそのまま返し、
        チェックリストの全セクションを欠落として報告する（フェイルクローズ）。

        Args:
            request: 更新または確定のリクエスト。
            generator: 今回の呼び出しに使う生成器。省略時はコンストラクタで渡したもの。

        Returns:
            新しい仕様書と欠落セクション。成功時のバージョンは入力+1。
        """
        current = request.current_spec
        if isinstance(request, UpdateRequest):
            window = request.last_messages[-MAX_WINDOW_MESSAGES:]
            prompt = build_update_prompt(current, window, request.is_first_run)
        else:
            prompt = build_finalize_prompt(current)

        logger.info("Merging specification v%d (mode=%s)", current.version, request.mode)
        try:
            text = await (generator or self._generator).complete(
                [PromptMessage(role="user", content=prompt)],
                temperature=_MERGE_TEMPERATURE,
                max_tokens=_MERGE_MAX_TOKENS,
            )
            output = parse_generator_output(text)
        except (GeneratorError, ValueError) as e:
            logger.warning("Specification merge failed closed at v%d: %s", current.version, e)
            return MergeResult(spec=current, missing_sections=self._progress.checklist_sections, applied=False)

        if isinstance(request, UpdateRequest):
            spec = enforce_non_regression(current, output.spec, output.corrections)
        else:
            spec = enforce_no_new_facts(current, output.spec)
        spec.version = current.version + 1
        spec.last_updated = self._clock()

        missing = self._progress.missing_checklist_sections(spec)
        logger.info("Specification merged to v%d, missing sections: %s", spec.version, missing or "none")
        return MergeResult(spec=spec, missing_sections=missing, applied=True)
