"""単一テーブル設計のキー体系とドメインモデルの相互変換。

パーティション ``SESSION#{session_id}`` に、メタデータ（``METADATA``）、
発言（``MESSAGE#{timestamp}#{message_id}``）、仕様書バージョン
（``SPEC#{version:010d}``）、エラー退避（``ERROR#...``）を格納する。
提出は ``SUBMISSION#{submission_id}`` パーティションに置く。
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from specwizard.models.session import ContactInfo, Message, Session, SessionState
from specwizard.models.specification import ProgressState, Specification
from specwizard.models.submission import Submission
from specwizard.storage.base import Record

METADATA_SK = "METADATA"
MESSAGE_PREFIX = "MESSAGE#"
SPEC_PREFIX = "SPEC#"
ERROR_PREFIX = "ERROR#"


def session_pk(session_id: str) -> str:
    return f"SESSION#{session_id}"


def submission_pk(submission_id: str) -> str:
    return f"SUBMISSION#{submission_id}"


def magic_link_index(token: str) -> str:
    return f"MAGIC_LINK#{token}"


def reference_index(reference_number: str) -> str:
    return f"REFERENCE#{reference_number}"


def sortable_timestamp(value: datetime) -> str:
    """辞書順と時刻順が一致する固定長のUTC表記。"""
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def message_sk(message: Message) -> str:
    return f"{MESSAGE_PREFIX}{sortable_timestamp(message.timestamp)}#{message.id}"


def spec_sk(version: int) -> str:
    return f"{SPEC_PREFIX}{version:010d}"


def error_sk(at: datetime) -> str:
    return f"{ERROR_PREFIX}{sortable_timestamp(at)}#{uuid.uuid4().hex[:8]}"


def session_to_record(session: Session) -> Record:
    data = session.model_dump(mode="json", exclude={"state"})
    user_info = session.state.user_info
    data["user_info"] = user_info.model_dump(mode="json") if user_info else None
    token = session.magic_link_token
    return Record(
        pk=session_pk(session.id),
        sk=METADATA_SK,
        gsi1pk=magic_link_index(token) if token else None,
        gsi1sk=session_pk(session.id) if token else None,
        expires_at=session.expires_at,
        data=data,
    )


def record_to_session(record: Record, state: SessionState | None = None) -> Session:
    data = dict(record.data)
    user_info = data.pop("user_info", None)
    state = state or SessionState()
    if user_info and state.user_info is None:
        state.user_info = ContactInfo.model_validate(user_info)
    return Session.model_validate({**data, "state": state})


def message_to_record(session_id: str, message: Message, expires_at: datetime) -> Record:
    return Record(
        pk=session_pk(session_id),
        sk=message_sk(message),
        expires_at=expires_at,
        data=message.model_dump(mode="json"),
    )


def record_to_message(record: Record) -> Message:
    return Message.model_validate(record.data)


def specification_to_record(
    session_id: str,
    specification: Specification,
    progress: ProgressState | None,
    expires_at: datetime,
) -> Record:
    return Record(
        pk=session_pk(session_id),
        sk=spec_sk(specification.version),
        expires_at=expires_at,
        data={
            "specification": specification.model_dump(mode="json"),
            "progress": progress.model_dump(mode="json") if progress else None,
        },
    )


def record_to_specification(record: Record) -> tuple[Specification, ProgressState | None]:
    progress = record.data.get("progress")
    return (
        Specification.model_validate(record.data["specification"]),
        ProgressState.model_validate(progress) if progress else None,
    )


def error_to_record(
    session_id: str,
    at: datetime,
    error: BaseException,
    user_input: str | None,
    expires_at: datetime | None,
) -> Record:
    data: dict[str, Any] = {
        "session_id": session_id,
        "error_type": type(error).__name__,
        "error_message": str(error),
        "user_input": user_input,
        "timestamp": at.isoformat(),
    }
    return Record(pk=session_pk(session_id), sk=error_sk(at), expires_at=expires_at, data=data)


def submission_to_record(submission: Submission) -> Record:
    return Record(
        pk=submission_pk(submission.id),
        sk=METADATA_SK,
        gsi1pk=reference_index(submission.reference_number),
        gsi1sk=submission_pk(submission.id),
        data=submission.model_dump(mode="json"),
    )


def record_to_submission(record: Record) -> Submission:
    return Submission.model_validate(record.data)
