"""仕様書スナップショットから進捗を導出するサービス。"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel

from specwizard.models.errors import StorageError
from specwizard.models.specification import ProgressState, ProjectComplexity, Specification, Topic


class TopicDefinition(BaseModel):
    """チェックリスト項目の定義。"""

    id: str
    name: str
    field: str
    required: bool = True
    checklist: bool = False


def _resolve(spec: Specification, dotted: str) -> Any:
    value: Any = spec
    for part in dotted.split("."):
        value = getattr(value, part)
    return value


def _is_filled(value: Any) -> bool:
    if isinstance(value, str):
        return bool(value.strip())
    return bool(value)


class ProgressTracker:
    """固定のチェックリストで仕様書の網羅状況を判定する。

    副作用も外部呼び出しも持たず、同じ入力に対して常に同じ結果を返す。
    """

    def __init__(self, config_dir: Path) -> None:
        self._config_dir = config_dir
        self._topics: list[TopicDefinition] | None = None

    def _load_topics(self) -> list[TopicDefinition]:
        """チェックリスト定義を読み込む。"""
        if self._topics is None:
            topics_file = self._config_dir / "progress-topics.yaml"
            try:
                with open(topics_file, encoding="utf-8") as f:
                    data = yaml.safe_load(f)
            except FileNotFoundError:
                raise StorageError(f"Topic checklist not found: {topics_file}") from None
            self._topics = [TopicDefinition.model_validate(t) for t in data["topics"]]
        return self._topics

    @property
    def topics(self) -> list[TopicDefinition]:
        return list(self._load_topics())

    @property
    def checklist_sections(self) -> list[str]:
        """マージ結果で欠落を報告する最上位セクション。"""
        return [t.id for t in self._load_topics() if t.checklist]

    def missing_checklist_sections(self, spec: Specification) -> list[str]:
        return [t.id for t in self._load_topics() if t.checklist and not _is_filled(_resolve(spec, t.field))]

    def derive(self, spec: Specification | None) -> ProgressState:
        """仕様書から進捗状態を導出する。

        Args:
            spec: 仕様書。未生成の場合はNone。

        Returns:
            網羅済み・未網羅のトピックと完成率。
        """
        definitions = self._load_topics()
        spec = spec or Specification()
        topics = [
            Topic(id=d.id, name=d.name, required=d.required, covered=_is_filled(_resolve(spec, d.field)))
            for d in definitions
        ]
        covered = [t.id for t in topics if t.covered]
        missing = [t.id for t in topics if not t.covered]
        ratio = len(covered) / len(topics) if topics else 1.0
        return ProgressState(
            topics=topics,
            covered_topics=covered,
            missing_sections=missing,
            completion_ratio=ratio,
            project_complexity=self.project_complexity(spec),
            specification_version=spec.version,
        )

    @staticmethod
    def project_complexity(spec: Specification) -> ProjectComplexity:
        """要件数などの重み付きスコアからプロジェクトの複雑度を判定する。"""
        summary = spec.plain_english_summary
        prd = spec.formal_prd
        score = (
            len(prd.requirements) * 1
            + len(prd.non_functional_requirements) * 2
            + len(summary.key_features) * 0.5
            + len(summary.integrations) * 1.5
        )
        if score <= 5:
            return "Simple"
        if score <= 15:
            return "Medium"
        return "Complex"
