"""Tests for the upload session state machine."""

import pytest

from directupload.core.exceptions import InvalidStateError
from directupload.models.session import (
    ALLOWED_TRANSITIONS,
    UploadSession,
    UploadStatus,
    UploadStrategy,
)


def make_session(**overrides) -> UploadSession:
    fields = dict(
        id="session-1",
        resource_name="lecture-42",
        file_name="video.mp4",
        storage_key="uploads/abc-video.mp4",
        bucket="test-bucket",
        declared_size=25 * 1024 * 1024,
        declared_content_type="video/mp4",
        strategy=UploadStrategy.MULTIPART,
    )
    fields.update(overrides)
    return UploadSession(**fields)


def test_new_session_is_pending():
    session = make_session()

    assert session.status == UploadStatus.PENDING
    assert session.parts == ()
    assert session.completed_at is None


@pytest.mark.parametrize("status", [UploadStatus.COMPLETE, UploadStatus.ABORTED])
def test_terminal_states_have_no_exits(status):
    """Test that complete and aborted sessions cannot move anywhere."""
    session = make_session(status=status)

    assert status.is_terminal
    for target in UploadStatus:
        with pytest.raises(InvalidStateError):
            session.ensure_transition(target)


def test_pending_cannot_jump_to_complete():
    session = make_session()

    with pytest.raises(InvalidStateError):
        session.ensure_transition(UploadStatus.COMPLETE)


def test_completing_can_fall_back_to_uploading():
    """Test that a rejected completion returns the session to uploading."""
    session = make_session(status=UploadStatus.COMPLETING)

    session.ensure_transition(UploadStatus.UPLOADING)
    session.ensure_transition(UploadStatus.COMPLETE)


def test_every_status_has_a_transition_entry():
    assert set(ALLOWED_TRANSITIONS) == set(UploadStatus)
    assert not any(s.is_terminal for s in (UploadStatus.PENDING, UploadStatus.UPLOADING, UploadStatus.COMPLETING))


def test_has_active_multipart():
    assert not make_session().has_active_multipart
    assert make_session(multipart_id="mp-1").has_active_multipart
    assert not make_session(strategy=UploadStrategy.SINGLE, multipart_id="mp-1").has_active_multipart


def test_session_is_immutable():
    session = make_session()

    with pytest.raises(AttributeError):
        session.status = UploadStatus.UPLOADING
