"""提出（見積もり依頼）のデータモデル。"""

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

from specwizard.models.session import ContactInfo

SubmissionStatus = Literal["pending", "reviewed", "quoted"]


class Submission(BaseModel):
    """仕様書の提出記録。作成後に変更できるのはstatusのみ。"""

    id: str
    session_id: str
    contact_info: ContactInfo
    specification_version: int
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    status: SubmissionStatus = "pending"
    reference_number: str
