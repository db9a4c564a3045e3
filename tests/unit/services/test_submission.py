"""SubmissionServiceのユニットテスト。"""

import re
from datetime import UTC, datetime

import pytest

from specwizard.models.errors import (
    InputValidationError,
    SessionAlreadySubmittedError,
    SubmissionNotFoundError,
)
from specwizard.models.session import ContactInfo, SessionState
from specwizard.models.specification import Requirement, Specification
from specwizard.services.session import SessionManager
from specwizard.services.submission import SubmissionService, generate_reference_number, validate_contact_info


def _contact(**overrides: str) -> ContactInfo:
    values = {"name": "Ann Walker", "email": "ann@example.com", "phone": "+44 (0) 7700 900123"}
    values.update(overrides)
    return ContactInfo(**values)


def _complete_spec() -> Specification:
    spec = Specification(version=4)
    summary = spec.plain_english_summary
    summary.overview = "A booking app for dog walkers"
    summary.target_users = "Dog walkers"
    summary.key_features = ["Book walks"]
    summary.flows = ["Owner books a walk"]
    spec.formal_prd.requirements = [Requirement(id="req-1", user_story="As an owner, I want to book a walk")]
    return spec


async def _ready_session(session_manager: SessionManager) -> str:
    session = await session_manager.create_session()
    await session_manager.save_session_state(session.id, SessionState(specification=_complete_spec()))
    return session.id


class TestValidateContactInfo:
    def test_valid(self) -> None:
        assert validate_contact_info(_contact()) == []

    def test_required_fields(self) -> None:
        errors = validate_contact_info(ContactInfo())
        assert errors == ["Name is required", "Email is required", "Phone number is required"]

    @pytest.mark.parametrize("email", ["ann", "ann@", "ann@example", "ann @example.com", "@example.com"])
    def test_invalid_email(self, email: str) -> None:
        assert validate_contact_info(_contact(email=email)) == ["Email format is invalid"]

    def test_short_phone(self) -> None:
        assert validate_contact_info(_contact(phone="123-456")) == ["Phone number must contain at least 10 digits"]


class TestReferenceNumber:
    def test_format(self) -> None:
        reference = generate_reference_number(datetime(2025, 1, 15, tzinfo=UTC))
        assert re.fullmatch(r"REF-[0-9A-Z]+-[0-9A-Z]{4}", reference)

    def test_timestamp_part_is_base36_millis(self) -> None:
        now = datetime(2025, 1, 15, tzinfo=UTC)
        millis = int(now.timestamp() * 1000)
        assert int(generate_reference_number(now).split("-")[1], 36) == millis


class TestSubmissionService:
    async def test_submit(self, submission_service: SubmissionService, session_manager: SessionManager) -> None:
        session_id = await _ready_session(session_manager)

        submission = await submission_service.submit(session_id, _contact())

        assert submission.status == "pending"
        assert submission.specification_version == 4
        assert submission.reference_number.startswith("REF-")
        session = await session_manager.get_session(session_id)
        assert session.status == "submitted"
        assert session.submission_id == submission.id

    async def test_lookup_by_id_and_reference(
        self,
        submission_service: SubmissionService,
        session_manager: SessionManager,
    ) -> None:
        submission = await submission_service.submit(await _ready_session(session_manager), _contact())

        assert (await submission_service.get_submission(submission.id)).id == submission.id
        by_reference = await submission_service.get_submission_by_reference(submission.reference_number)
        assert by_reference.id == submission.id
        assert by_reference.contact_info.email == "ann@example.com"

    async def test_second_submission_is_rejected(
        self,
        submission_service: SubmissionService,
        session_manager: SessionManager,
    ) -> None:
        session_id = await _ready_session(session_manager)
        await submission_service.submit(session_id, _contact())

        with pytest.raises(SessionAlreadySubmittedError):
            await submission_service.submit(session_id, _contact())

    async def test_invalid_contact_is_rejected(
        self,
        submission_service: SubmissionService,
        session_manager: SessionManager,
    ) -> None:
        session_id = await _ready_session(session_manager)

        with pytest.raises(InputValidationError) as exc_info:
            await submission_service.submit(session_id, _contact(email="not-an-email"))

        assert exc_info.value.errors == ["Email format is invalid"]
        assert (await session_manager.get_session(session_id)).status == "active"

    async def test_incomplete_specification_is_rejected(
        self,
        submission_service: SubmissionService,
        session_manager: SessionManager,
    ) -> None:
        session = await session_manager.create_session()
        spec = Specification(version=1)
        spec.plain_english_summary.overview = "Only an overview"
        await session_manager.save_session_state(session.id, SessionState(specification=spec))

        with pytest.raises(InputValidationError) as exc_info:
            await submission_service.submit(session.id, _contact())

        assert exc_info.value.errors == ["Missing sections: target_users, key_features, flows, requirements"]

    async def test_no_specification_is_rejected(
        self,
        submission_service: SubmissionService,
        session_manager: SessionManager,
    ) -> None:
        session = await session_manager.create_session()
        with pytest.raises(InputValidationError):
            await submission_service.submit(session.id, _contact())

    async def test_unknown_reference(self, submission_service: SubmissionService) -> None:
        with pytest.raises(SubmissionNotFoundError):
            await submission_service.get_submission_by_reference("REF-NOPE-0000")

    async def test_update_status(self, submission_service: SubmissionService, session_manager: SessionManager) -> None:
        submission = await submission_service.submit(await _ready_session(session_manager), _contact())

        updated = await submission_service.update_status(submission.id, "quoted")

        assert updated.status == "quoted"
        stored = await submission_service.get_submission(submission.id)
        assert stored.status == "quoted"
        assert stored.reference_number == submission.reference_number
