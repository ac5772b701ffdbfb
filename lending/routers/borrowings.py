from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlmodel import Session

from lending.db import get_session, unit_of_work
from lending.deps import require_admin
from lending.models import Admin
from lending.schemas import (
    BorrowerFields,
    BorrowingCreate,
    BorrowingCreated,
    BorrowingListResponse,
    BorrowingRead,
    BorrowingStatus,
    BorrowingUpdate,
    ReturnRequest,
    ReturnResult,
    Statistics,
)
from lending.services import reports
from lending.services.coordinator import BorrowingCoordinator
from lending.services.ledger import BorrowingLedger

router = APIRouter(prefix="/borrowings", tags=["borrowings"])


@router.get("", response_model=BorrowingListResponse)
def list_borrowings(
    status: Optional[BorrowingStatus] = Query(None, description="按状态过滤（可选）"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_session),
    _admin: Admin = Depends(require_admin),
):
    items, total = reports.list_borrowings(session, status=status, limit=limit, offset=offset)
    return {"items": items, "total": total, "limit": limit, "offset": offset, "status": status}


@router.get("/statistics", response_model=Statistics)
def get_statistics(
    session: Session = Depends(get_session),
    _admin: Admin = Depends(require_admin),
):
    return reports.statistics(session)


@router.get("/export.xlsx")
def export_borrowings_xlsx(
    status: Optional[BorrowingStatus] = Query(None),
    session: Session = Depends(get_session),
    _admin: Admin = Depends(require_admin),
):
    rows, _total = reports.list_borrowings(session, status=status)
    content = reports.borrowings_xlsx(rows)

    filename = f"borrowings-{status.value.lower()}.xlsx" if status else "borrowings.xlsx"
    headers = {
        "Content-Disposition": f"attachment; filename=\"{filename}\"; filename*=UTF-8''{quote(filename)}"
    }
    return Response(content=content, media_type=reports.XLSX_MEDIA_TYPE, headers=headers)


@router.get("/code/{code}", response_model=BorrowingRead)
def get_borrowing_by_code(code: str, session: Session = Depends(get_session)):
    return BorrowingLedger(session).read_by_code(code)


@router.post("", status_code=201, response_model=BorrowingCreated)
def create_borrowing(data: BorrowingCreate, session: Session = Depends(get_session)):
    borrower = BorrowerFields(
        borrower_name=data.borrower_name,
        contact=data.contact,
        purpose=data.purpose,
        staff=data.staff,
    )
    return BorrowingCoordinator(session).create(
        data.item_id, borrower, data.quantity, credential_photo=data.credential_photo
    )


@router.put("/return/{code}", response_model=ReturnResult)
def return_borrowing(
    code: str,
    body: Optional[ReturnRequest] = None,
    session: Session = Depends(get_session),
):
    signature = body.signature if body else None
    return BorrowingCoordinator(session).return_(code, signature=signature)


@router.get("/{borrowing_id}", response_model=BorrowingRead)
def get_borrowing(
    borrowing_id: int,
    session: Session = Depends(get_session),
    _admin: Admin = Depends(require_admin),
):
    return BorrowingLedger(session).read(borrowing_id)


@router.put("/{borrowing_id}", response_model=BorrowingRead)
def update_borrowing(
    borrowing_id: int,
    body: BorrowingUpdate,
    session: Session = Depends(get_session),
    _admin: Admin = Depends(require_admin),
):
    ledger = BorrowingLedger(session)
    with unit_of_work(session):
        ledger.update_metadata(borrowing_id, body.model_dump(exclude_unset=True))
    return ledger.read(borrowing_id)


@router.delete("/{borrowing_id}")
def delete_borrowing(
    borrowing_id: int,
    session: Session = Depends(get_session),
    _admin: Admin = Depends(require_admin),
):
    BorrowingCoordinator(session).delete_borrowing(borrowing_id)
    return {"ok": True}
