from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from lending.config import get_settings
from lending.db import get_session, unit_of_work
from lending.deps import require_admin
from lending.models import Admin
from lending.schemas import ItemCreate, ItemRead, ItemUpdate
from lending.services.coordinator import BorrowingCoordinator
from lending.services.items import ItemStore

router = APIRouter(prefix="/items", tags=["items"])


def _store(session: Session) -> ItemStore:
    return ItemStore(session, code_prefix=get_settings().item_code_prefix)


@router.get("", response_model=list[ItemRead])
def list_items(
    q: Optional[str] = Query(None, max_length=100, description="按名称/编号搜索（可选）"),
    session: Session = Depends(get_session),
):
    return [ItemRead.model_validate(i) for i in _store(session).list(q)]


@router.get("/code/{code}", response_model=ItemRead)
def get_item_by_code(code: str, session: Session = Depends(get_session)):
    return ItemRead.model_validate(_store(session).get_by_code(code))


@router.get("/{item_id}", response_model=ItemRead)
def get_item(item_id: int, session: Session = Depends(get_session)):
    return ItemRead.model_validate(_store(session).get(item_id))


@router.post("", status_code=201, response_model=ItemRead)
def create_item(
    data: ItemCreate,
    session: Session = Depends(get_session),
    _admin: Admin = Depends(require_admin),
):
    with unit_of_work(session):
        item = _store(session).create(
            name=data.name,
            code=data.code,
            total_stock=data.total_stock,
            photo=data.photo,
            notes=data.notes,
        )
    session.refresh(item)
    return ItemRead.model_validate(item)


@router.put("/{item_id}", response_model=ItemRead)
def update_item(
    item_id: int,
    body: ItemUpdate,
    session: Session = Depends(get_session),
    _admin: Admin = Depends(require_admin),
):
    with unit_of_work(session):
        item = _store(session).update_metadata(item_id, body.model_dump(exclude_unset=True))
    session.refresh(item)
    return ItemRead.model_validate(item)


@router.delete("/{item_id}")
def delete_item(
    item_id: int,
    session: Session = Depends(get_session),
    _admin: Admin = Depends(require_admin),
):
    BorrowingCoordinator(session).delete_item(item_id)
    return {"ok": True}
