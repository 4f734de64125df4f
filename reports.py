from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from sqlmodel import Session, func, select

from models import BorrowRequest, Equipment, RequestStatus, User

TOP_N = 10


def _created_between(statement, start_date: Optional[date], end_date: Optional[date]):
    # Both bounds are required; a half-open range is ignored.
    if start_date is None or end_date is None:
        return statement
    return statement.where(
        BorrowRequest.created_at >= datetime.combine(start_date, time.min, tzinfo=timezone.utc),
        BorrowRequest.created_at < datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc),
    )


def status_distribution(
    session: Session,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> list[dict]:
    statement = (
        select(BorrowRequest.status, func.count(BorrowRequest.id))
        .group_by(BorrowRequest.status)
        .order_by(BorrowRequest.status)
    )
    statement = _created_between(statement, start_date, end_date)
    return [
        {"status": status, "count": count}
        for status, count in session.exec(statement).all()
    ]


def popular_equipment(
    session: Session,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> list[dict]:
    borrow_count = func.count(BorrowRequest.id)
    statement = (
        select(BorrowRequest.equipment_id, borrow_count, Equipment.name, Equipment.category)
        .outerjoin(Equipment, Equipment.id == BorrowRequest.equipment_id)
        .group_by(BorrowRequest.equipment_id, Equipment.name, Equipment.category)
        .order_by(borrow_count.desc(), BorrowRequest.equipment_id)
        .limit(TOP_N)
    )
    statement = _created_between(statement, start_date, end_date)
    return [
        {
            "equipment_id": equipment_id,
            "borrow_count": count,
            "equipment_name": name,
            "equipment_category": category,
        }
        for equipment_id, count, name, category in session.exec(statement).all()
    ]


def active_users(
    session: Session,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> list[dict]:
    request_count = func.count(BorrowRequest.id)
    statement = (
        select(BorrowRequest.user_id, request_count, User.name, User.email)
        .outerjoin(User, User.id == BorrowRequest.user_id)
        .group_by(BorrowRequest.user_id, User.name, User.email)
        .order_by(request_count.desc(), BorrowRequest.user_id)
        .limit(TOP_N)
    )
    statement = _created_between(statement, start_date, end_date)
    return [
        {
            "user_id": user_id,
            "request_count": count,
            "user_name": name,
            "user_email": email,
        }
        for user_id, count, name, email in session.exec(statement).all()
    ]


def overdue_requests(session: Session, today: Optional[date] = None) -> list:
    """
    Approved requests due on or before today, with equipment and borrower rows.
    A date-only due date is treated as its midnight, which has passed by now.
    """
    today = today or date.today()
    statement = (
        select(BorrowRequest, Equipment, User)
        .join(Equipment, Equipment.id == BorrowRequest.equipment_id)
        .join(User, User.id == BorrowRequest.user_id)
        .where(
            BorrowRequest.status == RequestStatus.APPROVED,
            BorrowRequest.due_date <= today,
        )
        .order_by(BorrowRequest.due_date, BorrowRequest.id)
    )
    return session.exec(statement).all()
