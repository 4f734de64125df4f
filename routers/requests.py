from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Query
from sqlmodel import select

import lending
import reports
from db import SessionDep, paginate
from errors import Forbidden
from models import BorrowRequest, Equipment, RequestStatus, User, UserRole
from schemas import (
    AnalyticsReport,
    RequestCreate,
    RequestPage,
    RequestRead,
    RequestStatusUpdate,
    ReturnUpdate,
    UserSummary,
)
from .auth import AdminDep, CurrentUserRoleDep, StaffDep

router = APIRouter(tags=["requests"])


def _to_read(
    borrow_request: BorrowRequest,
    equipment: Optional[Equipment] = None,
    user: Optional[User] = None,
) -> RequestRead:
    return RequestRead(
        **borrow_request.model_dump(),
        equipment=equipment,
        user=UserSummary.model_validate(user) if user is not None else None,
    )


def _load_read(session: SessionDep, borrow_request: BorrowRequest) -> RequestRead:
    return _to_read(
        borrow_request,
        session.get(Equipment, borrow_request.equipment_id),
        session.get(User, borrow_request.user_id),
    )


def _check_owner(current: dict, borrow_request: BorrowRequest, action: str) -> None:
    if current["role"] == UserRole.student and borrow_request.user_id != current["user"].id:
        raise Forbidden(f"You can only {action} your own requests.")


@router.post("", response_model=RequestRead, status_code=201)
def create_request(request_data: RequestCreate, session: SessionDep, current: CurrentUserRoleDep):
    borrow_request = lending.create_request(
        session,
        user_id=current["user"].id,
        equipment_id=request_data.equipment_id,
        purpose=request_data.purpose,
        requested_date=request_data.requested_date,
        due_date=request_data.due_date,
    )
    return _load_read(session, borrow_request)


@router.get("", response_model=RequestPage)
def list_requests(
    session: SessionDep,
    current: CurrentUserRoleDep,
    status: Optional[RequestStatus] = None,
    user_id: Optional[int] = None,
    equipment_id: Optional[int] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
):
    # Students only ever see their own requests.
    if current["role"] == UserRole.student:
        user_id = current["user"].id

    query = (
        select(BorrowRequest, Equipment, User)
        .join(Equipment, Equipment.id == BorrowRequest.equipment_id)
        .join(User, User.id == BorrowRequest.user_id)
    )
    if status is not None:
        query = query.where(BorrowRequest.status == status)
    if user_id is not None:
        query = query.where(BorrowRequest.user_id == user_id)
    if equipment_id is not None:
        query = query.where(BorrowRequest.equipment_id == equipment_id)

    query = query.order_by(BorrowRequest.id.desc())
    rows, total, pages = paginate(session, query, page, limit)
    return RequestPage(
        items=[_to_read(req, equipment, user) for req, equipment, user in rows],
        total_count=total,
        current_page=page,
        total_pages=pages,
    )


@router.get("/overdue", response_model=List[RequestRead])
def list_overdue(session: SessionDep, current: StaffDep):
    return [
        _to_read(req, equipment, user)
        for req, equipment, user in reports.overdue_requests(session)
    ]


@router.get("/analytics", response_model=AnalyticsReport)
def analytics(
    session: SessionDep,
    current: AdminDep,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    return AnalyticsReport(
        status_distribution=reports.status_distribution(session, start_date, end_date),
        popular_equipment=reports.popular_equipment(session, start_date, end_date),
        active_users=reports.active_users(session, start_date, end_date),
    )


@router.get("/{request_id}", response_model=RequestRead)
def get_request(request_id: int, session: SessionDep, current: CurrentUserRoleDep):
    borrow_request = lending.get_request(session, request_id)
    _check_owner(current, borrow_request, "view")
    return _load_read(session, borrow_request)


@router.put("/{request_id}/status", response_model=RequestRead)
def update_request_status(
    request_id: int,
    update: RequestStatusUpdate,
    session: SessionDep,
    current: StaffDep,
):
    approver_id = update.approved_by
    if approver_id is None and update.status in (RequestStatus.APPROVED, RequestStatus.REJECTED):
        approver_id = current["user"].id

    borrow_request = lending.set_status(
        session,
        request_id,
        update.status,
        notes=update.notes,
        approver_id=approver_id,
    )
    return _load_read(session, borrow_request)


@router.put("/{request_id}/return", response_model=RequestRead)
def return_equipment(
    request_id: int,
    session: SessionDep,
    current: CurrentUserRoleDep,
    update: Optional[ReturnUpdate] = None,
):
    _check_owner(current, lending.get_request(session, request_id), "return")
    if (
        update is not None
        and update.status not in (None, RequestStatus.RETURNED)
        and current["role"] == UserRole.student
    ):
        raise Forbidden("Students can only mark requests as returned.")

    borrow_request = lending.return_equipment(
        session,
        request_id,
        status=update.status if update else None,
        notes=update.notes if update else None,
    )
    return _load_read(session, borrow_request)
