"""仕様書の提出（見積もり依頼）を扱うサービス。"""

import logging
import re
import secrets
import string
import uuid
from datetime import datetime

from specwizard.models.errors import (
    InputValidationError,
    SessionAlreadySubmittedError,
    StorageError,
    SubmissionNotFoundError,
)
from specwizard.models.session import ContactInfo
from specwizard.models.submission import Submission, SubmissionStatus
from specwizard.services.progress import ProgressTracker
from specwizard.services.session import SessionManager
from specwizard.storage import keys
from specwizard.storage.base import Clock, RecordStore, utc_now

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_MIN_PHONE_DIGITS = 10
_BASE36 = string.digits + string.ascii_uppercase
_REFERENCE_ATTEMPTS = 5


def validate_contact_info(contact_info: ContactInfo) -> list[str]:
    """連絡先情報を検証し、エラーメッセージのリストを返す（空なら妥当）。"""
    errors: list[str] = []
    if not contact_info.name.strip():
        errors.append("Name is required")

    email = contact_info.email.strip()
    if not email:
        errors.append("Email is required")
    elif not _EMAIL_RE.match(email):
        errors.append("Email format is invalid")

    phone = contact_info.phone.strip()
    if not phone:
        errors.append("Phone number is required")
    elif sum(c.isdigit() for c in phone) < _MIN_PHONE_DIGITS:
        errors.append(f"Phone number must contain at least {_MIN_PHONE_DIGITS} digits")
    return errors


def _to_base36(value: int) -> str:
    digits = ""
    while True:
        value, rem = divmod(value, 36)
        digits = _BASE36[rem] + digits
        if value == 0:
            return digits


def generate_reference_number(now: datetime) -> str:
    """人が読み上げられる受付番号（例: REF-LZ3K9A1B-7QX2）を生成する。"""
    millis = int(now.timestamp() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"REF-{_to_base36(millis)}-{suffix}"


class SubmissionService:
    """提出の検証・保存・照会を行う。"""

    def __init__(
        self,
        store: RecordStore,
        session_manager: SessionManager,
        progress_tracker: ProgressTracker,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._sessions = session_manager
        self._progress = progress_tracker
        self._clock = clock

    async def _unique_reference(self) -> str:
        for _ in range(_REFERENCE_ATTEMPTS):
            reference = generate_reference_number(self._clock())
            if await self._store.get_by_index(keys.reference_index(reference)) is None:
                return reference
            logger.warning("Reference number collision: %s", reference)
        raise StorageError("Could not allocate a unique reference number")

    async def submit(self, session_id: str, contact_info: ContactInfo) -> Submission:
        """セッションの最新仕様書を提出する。

        Args:
            session_id: セッションID。
            contact_info: 連絡先情報。

        Returns:
            保存された提出記録。

        Raises:
            SessionNotFoundError: セッションが存在しない、または有効期限切れの場合。
            SessionAlreadySubmittedError: 既に提出済みの場合。
            InputValidationError: 連絡先または仕様書の必須セクションが不足している場合。
        """
        session = await self._sessions.get_session(session_id)
        if session.status == "submitted" or session.submission_id:
            raise SessionAlreadySubmittedError(session_id)

        errors = validate_contact_info(contact_info)
        spec = session.state.specification
        if spec is None:
            errors.append("Specification has not been generated yet")
        else:
            progress = self._progress.derive(spec)
            missing = [t.id for t in progress.topics if t.required and not t.covered]
            if missing:
                errors.append(f"Missing sections: {', '.join(missing)}")
        if errors or spec is None:
            raise InputValidationError("Submission rejected", errors)

        submission = Submission(
            id=str(uuid.uuid4()),
            session_id=session_id,
            contact_info=contact_info,
            specification_version=spec.version,
            submitted_at=self._clock(),
            reference_number=await self._unique_reference(),
        )
        await self._store.put(keys.submission_to_record(submission))
        await self._sessions.mark_submitted(session_id, submission.id)
        logger.info("Session %s submitted as %s", session_id, submission.reference_number)
        return submission

    async def get_submission(self, submission_id: str) -> Submission:
        """提出記録を取得する。

        Raises:
            SubmissionNotFoundError: 提出記録が存在しない場合。
        """
        record = await self._store.get(keys.submission_pk(submission_id), keys.METADATA_SK)
        if record is None:
            raise SubmissionNotFoundError(submission_id)
        return keys.record_to_submission(record)

    async def get_submission_by_reference(self, reference_number: str) -> Submission:
        """受付番号から提出記録を取得する。

        Raises:
            SubmissionNotFoundError: 該当する提出記録が存在しない場合。
        """
        record = await self._store.get_by_index(keys.reference_index(reference_number))
        if record is None:
            raise SubmissionNotFoundError(reference_number)
        return keys.record_to_submission(record)

    async def update_status(self, submission_id: str, status: SubmissionStatus) -> Submission:
        """提出記録のステータスを更新する。ステータス以外は変更できない。"""
        submission = await self.get_submission(submission_id)
        submission.status = status
        await self._store.put(keys.submission_to_record(submission))
        return submission
