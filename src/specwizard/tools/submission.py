"""提出関連のMCPツール定義。"""

from typing import Any

from fastmcp import FastMCP

from specwizard.models.errors import SpecWizardError
from specwizard.models.session import ContactInfo
from specwizard.models.submission import Submission
from specwizard.services.submission import SubmissionService
from specwizard.tools.common import error_response


def _submission_response(submission: Submission) -> dict[str, Any]:
    return {
        "submission_id": submission.id,
        "session_id": submission.session_id,
        "reference_number": submission.reference_number,
        "status": submission.status,
        "specification_version": submission.specification_version,
        "submitted_at": submission.submitted_at.isoformat(),
    }


def register_submission_tools(mcp: FastMCP, submission_service: SubmissionService) -> None:
    """提出関連のMCPツールを登録する。"""

    @mcp.tool()
    async def submit_specification(
        session_id: str,
        name: str,
        email: str,
        phone: str,
        budget_range: str | None = None,
        timeline: str | None = None,
        referral_source: str | None = None,
        urgency: str | None = None,
    ) -> dict[str, Any]:
        """仕様書を見積もり依頼として提出する。

        提出は1セッションにつき1回のみです。返却される受付番号（reference_number）を
        利用者に必ず伝えてください。

        Args:
            session_id: セッションID。
            name: 氏名。
            email: メールアドレス。
            phone: 電話番号（10桁以上）。
            budget_range: 予算感（任意）。
            timeline: 希望納期（任意）。
            referral_source: 紹介元（任意）。
            urgency: 緊急度（任意）。
        """
        contact_info = ContactInfo(
            name=name,
            email=email,
            phone=phone,
            budget_range=budget_range,
            timeline=timeline,
            referral_source=referral_source,
            urgency=urgency,
        )
        try:
            submission = await submission_service.submit(session_id, contact_info)
            return _submission_response(submission)
        except SpecWizardError as e:
            return error_response(e)

    @mcp.tool()
    async def get_submission_by_reference(reference_number: str) -> dict[str, Any]:
        """受付番号から提出記録を取得する。

        Args:
            reference_number: 提出時に発行された受付番号（REF-で始まる）。
        """
        try:
            submission = await submission_service.get_submission_by_reference(reference_number)
            return _submission_response(submission)
        except SpecWizardError as e:
            return error_response(e)
