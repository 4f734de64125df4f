import logging
from typing import List, Optional

from fastapi import APIRouter, Query
from sqlalchemy import or_
from sqlmodel import select

import lending
from db import SessionDep, paginate
from models import Equipment
from schemas import EquipmentCreate, EquipmentPage, EquipmentUpdate, MessageResponse
from .auth import AdminDep, CurrentUserRoleDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["equipment"])


@router.post("", response_model=Equipment, status_code=201)
def create_equipment(item_in: EquipmentCreate, session: SessionDep, current: AdminDep):
    equipment = Equipment(**item_in.model_dump())
    session.add(equipment)
    session.commit()
    session.refresh(equipment)
    logger.info("Equipment %s (%s) added by user %s", equipment.id, equipment.name, current["user"].id)
    return equipment


@router.get("", response_model=EquipmentPage)
def search_equipment(
    session: SessionDep,
    current: CurrentUserRoleDep,
    category: Optional[str] = None,
    availability: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
):
    """
    List equipment, optionally filtered by category, availability,
    and a case-insensitive search over name and category.
    """
    query = select(Equipment)

    if category:
        query = query.where(Equipment.category == category)

    if availability is not None:
        query = query.where(Equipment.availability == availability)

    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(
            or_(Equipment.name.ilike(pattern), Equipment.category.ilike(pattern))
        )

    query = query.order_by(Equipment.name, Equipment.id)
    items, total, pages = paginate(session, query, page, limit)
    return EquipmentPage(
        items=items,
        total_count=total,
        current_page=page,
        total_pages=pages,
    )


@router.get("/categories", response_model=List[str])
def list_categories(session: SessionDep, current: CurrentUserRoleDep):
    return session.exec(
        select(Equipment.category).distinct().order_by(Equipment.category)
    ).all()


@router.get("/{equipment_id}", response_model=Equipment)
def get_equipment(equipment_id: int, session: SessionDep, current: CurrentUserRoleDep):
    return lending.get_equipment(session, equipment_id)


@router.put("/{equipment_id}", response_model=Equipment)
def update_equipment(
    equipment_id: int,
    update: EquipmentUpdate,
    session: SessionDep,
    current: AdminDep,
):
    changes = update.model_dump(exclude_none=True)
    return lending.update_equipment(session, equipment_id, changes)


@router.delete("/{equipment_id}", response_model=MessageResponse)
def delete_equipment(equipment_id: int, session: SessionDep, current: AdminDep):
    lending.delete_equipment(session, equipment_id)
    return {"message": "Equipment deleted successfully"}
