"""
Borrowing rules: request admission, status transitions and the equipment
deletion guard. Routers call these with a session; every failure is raised
as an errors.LendingError subclass.
"""
import logging
import threading
from datetime import date
from typing import Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, func, select

from config import settings
from errors import (
    CapacityExceeded,
    Forbidden,
    IllegalTransition,
    InvalidInput,
    LendingError,
    NotFound,
    Unavailable,
)
from models import ACTIVE_STATUSES, BorrowRequest, Equipment, RequestStatus, User, utcnow

logger = logging.getLogger(__name__)

CAPACITY_MESSAGE = "Equipment not available - all units are booked for the selected dates"

ACTIVE_DELETE_MESSAGE = (
    "Cannot delete equipment: it has active borrow requests "
    "(pending approval or currently borrowed). "
    "Wait for borrowed items to be returned and reject any pending requests, "
    "then try again."
)
HISTORY_DELETE_MESSAGE = (
    "Cannot delete equipment: it has borrowing history that must be kept "
    "for school records. Mark it as not available instead to hide it "
    "from borrowers."
)
LINKED_DELETE_MESSAGE = (
    "Cannot delete equipment: it is linked to borrowing records. "
    "Mark it as not available instead."
)

TRANSITIONS = {
    RequestStatus.PENDING: {
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
        RequestStatus.RETURNED,
    },
    RequestStatus.APPROVED: {RequestStatus.RETURNED},
    RequestStatus.REJECTED: set(),
    RequestStatus.RETURNED: set(),
}

# Fixed pool of lock stripes; ids sharing a stripe simply serialize together.
ADMISSION_LOCK_STRIPES = 64
_ADMISSION_LOCKS = [threading.Lock() for _ in range(ADMISSION_LOCK_STRIPES)]


def _admission_lock(equipment_id: int) -> threading.Lock:
    return _ADMISSION_LOCKS[equipment_id % ADMISSION_LOCK_STRIPES]


def parse_equipment_id(raw: Union[int, str, None]) -> int:
    if isinstance(raw, bool):
        raise InvalidInput("Invalid equipment ID")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        digits = raw.strip()
        if not (digits.isascii() and digits.isdigit()):
            raise InvalidInput("Invalid equipment ID format")
        return int(digits)
    raise InvalidInput("Invalid equipment ID")


def overlaps(start_a: date, end_a: date, start_b: date, end_b: date) -> bool:
    """Inclusive overlap: ranges sharing an endpoint date overlap."""
    return start_a <= end_b and end_a >= start_b


def count_overlapping(
    session: Session,
    equipment_id: int,
    requested_date: date,
    due_date: date,
) -> int:
    """Number of pending/approved requests for the item that overlap the range."""
    statement = (
        select(func.count())
        .select_from(BorrowRequest)
        .where(
            BorrowRequest.equipment_id == equipment_id,
            BorrowRequest.status.in_(ACTIVE_STATUSES),
            BorrowRequest.requested_date <= due_date,
            BorrowRequest.due_date >= requested_date,
        )
    )
    return session.exec(statement).one()


def create_request(
    session: Session,
    user_id: int,
    equipment_id: Union[int, str],
    purpose: Optional[str],
    requested_date: date,
    due_date: date,
) -> BorrowRequest:
    equipment_id = parse_equipment_id(equipment_id)

    if requested_date > due_date:
        raise InvalidInput("Requested date must be on or before the due date")

    # The count and the insert must not interleave with another admission
    # for the same item, otherwise the last unit can be booked twice.
    with _admission_lock(equipment_id):
        try:
            equipment = session.exec(
                select(Equipment).where(Equipment.id == equipment_id).with_for_update()
            ).first()
            if equipment is None:
                raise NotFound("Equipment not found")
            if not equipment.availability:
                raise Unavailable("Equipment not available")

            booked = count_overlapping(session, equipment_id, requested_date, due_date)
            if booked >= equipment.quantity:
                logger.info(
                    "Refused request by user %s for equipment %s (%s..%s): %s of %s units booked",
                    user_id, equipment_id, requested_date, due_date, booked, equipment.quantity,
                )
                raise CapacityExceeded(CAPACITY_MESSAGE)
        except LendingError:
            session.rollback()
            raise

        borrow_request = BorrowRequest(
            user_id=user_id,
            equipment_id=equipment_id,
            purpose=purpose,
            requested_date=requested_date,
            due_date=due_date,
            status=RequestStatus.PENDING,
        )
        session.add(borrow_request)
        session.commit()

    session.refresh(borrow_request)
    logger.info(
        "Request %s created by user %s for equipment %s",
        borrow_request.id, user_id, equipment_id,
    )
    return borrow_request


def get_request(session: Session, request_id: int) -> BorrowRequest:
    borrow_request = session.get(BorrowRequest, request_id)
    if borrow_request is None:
        raise NotFound("Request not found")
    return borrow_request


def set_status(
    session: Session,
    request_id: int,
    new_status: Union[RequestStatus, str],
    notes: Optional[str] = None,
    approver_id: Optional[int] = None,
    enforce: Optional[bool] = None,
) -> BorrowRequest:
    """
    Move a request to `new_status`.
    With `enforce` (default: settings.enforce_transitions) only the edges in
    TRANSITIONS are accepted; otherwise any status may follow any other.
    """
    borrow_request = get_request(session, request_id)
    try:
        new_status = RequestStatus(new_status)
    except ValueError:
        raise InvalidInput(f"Unknown status: {new_status}") from None

    if enforce is None:
        enforce = settings.enforce_transitions
    current = borrow_request.status
    if enforce and new_status not in TRANSITIONS[current]:
        raise IllegalTransition(
            f"Cannot change request status from {current.value} to {new_status.value}"
        )
    if approver_id is not None and session.get(User, approver_id) is None:
        raise InvalidInput("Approver not found")

    borrow_request.status = new_status
    if notes:
        borrow_request.notes = notes
    if approver_id is not None:
        borrow_request.approved_by = approver_id
    if new_status == RequestStatus.RETURNED:
        borrow_request.returned_date = date.today()

    session.add(borrow_request)
    session.commit()
    session.refresh(borrow_request)
    logger.info("Request %s: %s -> %s", request_id, current.value, new_status.value)
    return borrow_request


def return_equipment(
    session: Session,
    request_id: int,
    status: Optional[RequestStatus] = None,
    notes: Optional[str] = None,
    enforce: Optional[bool] = None,
) -> BorrowRequest:
    return set_status(
        session,
        request_id,
        status or RequestStatus.RETURNED,
        notes=notes,
        enforce=enforce,
    )


def get_equipment(session: Session, equipment_id: int) -> Equipment:
    equipment = session.get(Equipment, equipment_id)
    if equipment is None:
        raise NotFound("Equipment not found")
    return equipment


def update_equipment(session: Session, equipment_id: int, changes: dict) -> Equipment:
    """Apply already-validated allow-listed `changes` and stamp updated_at."""
    equipment = get_equipment(session, equipment_id)
    for field, value in changes.items():
        setattr(equipment, field, value)
    equipment.updated_at = utcnow()
    session.add(equipment)
    session.commit()
    session.refresh(equipment)
    return equipment


def delete_equipment(session: Session, equipment_id: int) -> None:
    equipment = get_equipment(session, equipment_id)

    referenced = session.exec(
        select(BorrowRequest.id).where(BorrowRequest.equipment_id == equipment_id)
    ).first()
    if referenced is not None:
        active = session.exec(
            select(BorrowRequest.id).where(
                BorrowRequest.equipment_id == equipment_id,
                BorrowRequest.status.in_(ACTIVE_STATUSES),
            )
        ).first()
        logger.info("Refused deletion of equipment %s (active=%s)", equipment_id, active is not None)
        if active is not None:
            raise Forbidden(ACTIVE_DELETE_MESSAGE)
        raise Forbidden(HISTORY_DELETE_MESSAGE)

    try:
        session.delete(equipment)
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        logger.warning("Equipment %s still referenced at delete time: %s", equipment_id, exc.orig)
        raise Forbidden(LINKED_DELETE_MESSAGE) from exc
    logger.info("Equipment %s deleted", equipment_id)
