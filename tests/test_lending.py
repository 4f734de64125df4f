"""Tests for the borrowing rules in lending.py."""
from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError

import lending
from errors import (
    CapacityExceeded,
    Forbidden,
    IllegalTransition,
    InvalidInput,
    NotFound,
    Unavailable,
)
from models import BorrowRequest, Equipment, RequestStatus, utcnow


def test_overlap_is_boundary_inclusive():
    assert lending.overlaps(date(2025, 1, 5), date(2025, 1, 10), date(2025, 1, 10), date(2025, 1, 15))
    assert not lending.overlaps(date(2025, 1, 5), date(2025, 1, 9), date(2025, 1, 10), date(2025, 1, 15))


def test_shared_boundary_date_blocks_single_unit(session, make_user, make_equipment):
    user = make_user()
    item = make_equipment(quantity=1)
    lending.create_request(session, user.id, item.id, "lab", date(2025, 1, 5), date(2025, 1, 10))

    with pytest.raises(CapacityExceeded):
        lending.create_request(session, user.id, item.id, "lab", date(2025, 1, 10), date(2025, 1, 15))


def test_adjacent_ranges_do_not_overlap(session, make_user, make_equipment):
    user = make_user()
    item = make_equipment(quantity=1)
    lending.create_request(session, user.id, item.id, "lab", date(2025, 1, 5), date(2025, 1, 9))

    second = lending.create_request(session, user.id, item.id, "lab", date(2025, 1, 10), date(2025, 1, 15))
    assert second.status == RequestStatus.PENDING


def test_quantity_allows_that_many_overlapping_requests(session, make_user, make_equipment):
    user = make_user()
    item = make_equipment(quantity=2)
    for _ in range(2):
        lending.create_request(session, user.id, item.id, None, date(2025, 3, 1), date(2025, 3, 3))

    with pytest.raises(CapacityExceeded) as excinfo:
        lending.create_request(session, user.id, item.id, None, date(2025, 3, 2), date(2025, 3, 2))
    assert "all units are booked" in excinfo.value.message
    assert lending.count_overlapping(session, item.id, date(2025, 3, 1), date(2025, 3, 3)) == 2


def test_rejected_and_returned_rows_free_capacity(session, make_user, make_equipment, make_request):
    user = make_user()
    item = make_equipment(quantity=1)
    make_request(user, item, date(2025, 3, 1), date(2025, 3, 5), RequestStatus.REJECTED)
    make_request(user, item, date(2025, 3, 1), date(2025, 3, 5), RequestStatus.RETURNED)

    created = lending.create_request(session, user.id, item.id, None, date(2025, 3, 2), date(2025, 3, 3))
    assert created.id is not None


def test_admission_does_not_touch_catalog(session, make_user, make_equipment):
    user = make_user()
    item = make_equipment(quantity=3)
    lending.create_request(session, user.id, item.id, None, date(2025, 3, 1), date(2025, 3, 3))

    session.refresh(item)
    assert item.quantity == 3
    assert item.availability is True


def test_unavailable_equipment_always_refused(session, make_user, make_equipment):
    user = make_user()
    item = make_equipment(quantity=5, availability=False)

    with pytest.raises(Unavailable):
        lending.create_request(session, user.id, item.id, None, date(2025, 3, 1), date(2025, 3, 3))
    assert session.get(Equipment, item.id) is not None


def test_missing_equipment_is_not_found(session, make_user):
    user = make_user()
    with pytest.raises(NotFound):
        lending.create_request(session, user.id, 999, None, date(2025, 3, 1), date(2025, 3, 3))


@pytest.mark.parametrize("raw", ["abc", "", "1.5", None, True, "1_000", "+3", "\u0661\u0662"])
def test_equipment_id_must_be_integer(session, make_user, raw):
    user = make_user()
    with pytest.raises(InvalidInput):
        lending.create_request(session, user.id, raw, None, date(2025, 3, 1), date(2025, 3, 3))


def test_equipment_id_string_is_parsed(session, make_user, make_equipment):
    user = make_user()
    item = make_equipment()
    created = lending.create_request(session, user.id, f" {item.id} ", None, date(2025, 3, 1), date(2025, 3, 3))
    assert created.equipment_id == item.id


def test_requested_after_due_is_refused(session, make_user, make_equipment):
    user = make_user()
    item = make_equipment()
    with pytest.raises(InvalidInput):
        lending.create_request(session, user.id, item.id, None, date(2025, 3, 5), date(2025, 3, 1))


def test_legal_transitions(session, make_user, make_equipment, make_request):
    staff = make_user()
    item = make_equipment()
    row = make_request(staff, item, date(2025, 3, 1), date(2025, 3, 2))

    approved = lending.set_status(session, row.id, RequestStatus.APPROVED, notes="ok", approver_id=staff.id)
    assert approved.status == RequestStatus.APPROVED
    assert approved.notes == "ok"
    assert approved.approved_by == staff.id
    assert approved.returned_date is None

    returned = lending.set_status(session, row.id, "RETURNED")
    assert returned.status == RequestStatus.RETURNED
    assert returned.returned_date == date.today()
    assert returned.notes == "ok"


@pytest.mark.parametrize(
    "current,target",
    [
        (RequestStatus.RETURNED, RequestStatus.PENDING),
        (RequestStatus.REJECTED, RequestStatus.APPROVED),
        (RequestStatus.APPROVED, RequestStatus.PENDING),
        (RequestStatus.APPROVED, RequestStatus.REJECTED),
    ],
)
def test_illegal_transitions_refused(session, make_user, make_equipment, make_request, current, target):
    user = make_user()
    row = make_request(user, make_equipment(), date(2025, 3, 1), date(2025, 3, 2), current)

    with pytest.raises(IllegalTransition):
        lending.set_status(session, row.id, target)
    session.refresh(row)
    assert row.status == current


def test_permissive_mode_accepts_any_transition(session, make_user, make_equipment, make_request):
    user = make_user()
    row = make_request(user, make_equipment(), date(2025, 3, 1), date(2025, 3, 2), RequestStatus.RETURNED)

    updated = lending.set_status(session, row.id, RequestStatus.PENDING, enforce=False)
    assert updated.status == RequestStatus.PENDING


def test_unknown_status_is_invalid(session, make_user, make_equipment, make_request):
    user = make_user()
    row = make_request(user, make_equipment(), date(2025, 3, 1), date(2025, 3, 2))
    with pytest.raises(InvalidInput):
        lending.set_status(session, row.id, "LOST")


def test_set_status_missing_request(session):
    with pytest.raises(NotFound):
        lending.set_status(session, 42, RequestStatus.APPROVED)


def test_return_on_pending_request_stamps_returned_date(session, make_user, make_equipment, make_request):
    # Returning a request that was never approved is accepted.
    user = make_user()
    row = make_request(user, make_equipment(), date(2025, 3, 1), date(2025, 3, 2))

    returned = lending.return_equipment(session, row.id)
    assert returned.status == RequestStatus.RETURNED
    assert returned.returned_date is not None


def test_delete_unreferenced_equipment(session, make_equipment):
    item = make_equipment()
    lending.delete_equipment(session, item.id)
    assert session.get(Equipment, item.id) is None


def test_delete_missing_equipment(session):
    with pytest.raises(NotFound):
        lending.delete_equipment(session, 12345)


@pytest.mark.parametrize("status", [RequestStatus.PENDING, RequestStatus.APPROVED])
def test_delete_with_active_request_refused(session, make_user, make_equipment, make_request, status):
    item = make_equipment()
    make_request(make_user(), item, date(2025, 3, 1), date(2025, 3, 2), RequestStatus.RETURNED)
    make_request(make_user(), item, date(2025, 3, 1), date(2025, 3, 2), status)

    with pytest.raises(Forbidden) as excinfo:
        lending.delete_equipment(session, item.id)
    assert excinfo.value.message == lending.ACTIVE_DELETE_MESSAGE


@pytest.mark.parametrize("status", [RequestStatus.REJECTED, RequestStatus.RETURNED])
def test_delete_with_history_refused(session, make_user, make_equipment, make_request, status):
    item = make_equipment()
    make_request(make_user(), item, date(2025, 3, 1), date(2025, 3, 2), status)

    with pytest.raises(Forbidden) as excinfo:
        lending.delete_equipment(session, item.id)
    assert excinfo.value.message == lending.HISTORY_DELETE_MESSAGE
    assert session.get(Equipment, item.id) is not None


def test_delete_integrity_error_is_forbidden(session, make_equipment, monkeypatch):
    item = make_equipment()

    def failing_commit():
        raise IntegrityError("DELETE FROM equipment", {}, Exception("FOREIGN KEY constraint failed"))

    monkeypatch.setattr(session, "commit", failing_commit)
    with pytest.raises(Forbidden) as excinfo:
        lending.delete_equipment(session, item.id)
    assert excinfo.value.message == lending.LINKED_DELETE_MESSAGE


def test_update_equipment_applies_changes_and_stamps(session, make_equipment):
    item = make_equipment(quantity=1)
    before = item.updated_at

    updated = lending.update_equipment(session, item.id, {"quantity": 4, "availability": False})
    assert updated.quantity == 4
    assert updated.availability is False
    assert updated.updated_at >= before


def test_ledger_rows_survive_status_changes(session, make_user, make_equipment, make_request):
    user = make_user()
    row = make_request(user, make_equipment(), date(2025, 3, 1), date(2025, 3, 2))
    lending.set_status(session, row.id, RequestStatus.REJECTED)
    assert session.get(BorrowRequest, row.id) is not None


def test_timestamps_default_to_aware_utc():
    assert utcnow().tzinfo is not None
    assert Equipment(name="Tripod", category="AV").created_at.tzinfo is not None
    assert Equipment(name="Tripod", category="AV").updated_at.tzinfo is not None
    row = BorrowRequest(user_id=1, equipment_id=1, requested_date=date(2025, 3, 1), due_date=date(2025, 3, 2))
    assert row.created_at.tzinfo is not None


def test_unknown_equipment_ids_leave_no_lock_behind(session, make_user):
    user = make_user()
    for made_up in range(10_000, 10_500):
        with pytest.raises(NotFound):
            lending.create_request(session, user.id, made_up, None, date(2025, 3, 1), date(2025, 3, 2))

    assert len(lending._ADMISSION_LOCKS) == lending.ADMISSION_LOCK_STRIPES
    assert not any(lock.locked() for lock in lending._ADMISSION_LOCKS)


def test_same_equipment_id_always_maps_to_one_lock():
    assert lending._admission_lock(7) is lending._admission_lock(7)
    assert lending._admission_lock(7) is lending._admission_lock(7 + lending.ADMISSION_LOCK_STRIPES)


def test_unknown_approver_is_invalid_and_leaves_request_untouched(session, make_user, make_equipment, make_request):
    user = make_user()
    row = make_request(user, make_equipment(), date(2025, 3, 1), date(2025, 3, 2))

    with pytest.raises(InvalidInput):
        lending.set_status(session, row.id, RequestStatus.APPROVED, approver_id=9999)

    session.refresh(row)
    assert row.status == RequestStatus.PENDING
    assert row.approved_by is None
