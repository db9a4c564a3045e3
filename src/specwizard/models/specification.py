"""仕様書と進捗状態のデータモデル。

生成器とはcamelCaseのJSONでやり取りするため、全モデルにcamelCaseの
エイリアスを付与している。Python側ではsnake_caseのフィールド名を使う。
"""

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

RequirementPriority = Literal["must-have", "nice-to-have"]
ProjectComplexity = Literal["Simple", "Medium", "Complex"]


class CamelModel(BaseModel):
    """camelCaseエイリアスを持つモデルの基底クラス。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MvpDefinition(CamelModel):
    """MVPに含める機能と含めない機能。"""

    included: list[str] = Field(default_factory=list)
    excluded: list[str] = Field(default_factory=list)


class PlainEnglishSummary(CamelModel):
    """利用者向けの平易な要約。"""

    overview: str = ""
    target_users: str = ""
    key_features: list[str] = Field(default_factory=list)
    flows: list[str] = Field(default_factory=list)
    rules_and_constraints: list[str] = Field(default_factory=list)
    non_functional: list[str] = Field(default_factory=list)
    integrations: list[str] = Field(default_factory=list)
    mvp_definition: MvpDefinition = Field(default_factory=MvpDefinition)


class Requirement(CamelModel):
    """EARS形式の受け入れ基準を持つ機能要件。"""

    id: str
    user_story: str
    acceptance_criteria: list[str] = Field(default_factory=list)
    priority: RequirementPriority = "must-have"

    @field_validator("priority", mode="before")
    @classmethod
    def _normalize_priority(cls, value: Any) -> str:
        # 生成器は "must" や "should-have" を返すことがある
        text = str(value or "").strip().lower()
        if text.startswith("must"):
            return "must-have"
        return "nice-to-have"


class NFR(CamelModel):
    """非機能要件。"""

    id: str
    category: str = "General"
    description: str


class FormalPRD(CamelModel):
    """開発チーム向けの正式なPRD。"""

    introduction: str = ""
    glossary: dict[str, str] = Field(default_factory=dict)
    requirements: list[Requirement] = Field(default_factory=list)
    non_functional_requirements: list[NFR] = Field(default_factory=list)


class Specification(CamelModel):
    """会話から導出される仕様書。バージョンはマージ成功ごとに1ずつ増える。"""

    version: int = Field(default=0, ge=0)
    plain_english_summary: PlainEnglishSummary = Field(default_factory=PlainEnglishSummary)
    formal_prd: FormalPRD = Field(default_factory=FormalPRD, alias="formalPRD")
    last_updated: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_generator_json(self) -> dict[str, Any]:
        """生成器に渡す形式（camelCase、バージョン・時刻なし）で出力する。"""
        return self.model_dump(mode="json", by_alias=True, exclude={"version", "last_updated"})


class Topic(CamelModel):
    """チェックリストの1項目。"""

    id: str
    name: str
    covered: bool = False
    required: bool = True


class ProgressState(CamelModel):
    """仕様書スナップショットから導出される進捗。独自の状態は持たない。"""

    topics: list[Topic] = Field(default_factory=list)
    covered_topics: list[str] = Field(default_factory=list)
    missing_sections: list[str] = Field(default_factory=list)
    completion_ratio: float = Field(default=0.0, ge=0.0, le=1.0)
    project_complexity: ProjectComplexity = "Simple"
    specification_version: int = 0
