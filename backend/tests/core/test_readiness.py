"""Readiness - tests for the both-sides-ready gate predicates."""

from snakeoil.core.domain_types import SessionStatus
from snakeoil.core.readiness import both_ready, content_visible, is_ready, ready_field


def test_ready_field_names():
    assert ready_field(True) == "host_ready"
    assert ready_field(False) == "guest_ready"


def test_is_ready_reads_own_flag(make_session):
    session = make_session(host_ready=True)
    assert is_ready(session, as_host=True)
    assert not is_ready(session, as_host=False)


def test_content_hidden_until_both_ready(make_session):
    assert not content_visible(make_session())
    assert not content_visible(make_session(host_ready=True))
    assert not content_visible(make_session(guest_ready=True))
    assert content_visible(make_session(host_ready=True, guest_ready=True))
    assert both_ready(make_session(host_ready=True, guest_ready=True))


def test_content_hidden_outside_in_progress(make_session):
    completed = make_session(
        status=SessionStatus.COMPLETED, host_ready=True, guest_ready=True,
    )
    assert not content_visible(completed)
    assert not content_visible(None)
