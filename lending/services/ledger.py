import logging
from typing import Any, Optional

from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from lending.errors import DuplicateCode, NotFound, NotFoundOrAlreadyReturned, ValidationError
from lending.models import Borrowing, Item, utcnow
from lending.schemas import BorrowerFields, BorrowingRead, BorrowingStatus, Statistics
from lending.services.codes import next_borrowing_code

logger = logging.getLogger(__name__)

# 管理员能改的字段；status / quantity / item_id 只能走借还流程
EDITABLE_FIELDS = ("borrower_name", "contact", "purpose", "staff")
REQUIRED_FIELDS = ("borrower_name", "purpose", "staff")


def to_read(borrowing: Borrowing, item: Optional[Item]) -> BorrowingRead:
    data = borrowing.model_dump()
    return BorrowingRead(
        **data,
        item_name=item.name if item else None,
        item_code=item.code if item else None,
        item_photo=item.photo if item else None,
    )


class BorrowingLedger:
    def __init__(self, session: Session, code_prefix: str = "PMJ"):
        self.session = session
        self.code_prefix = code_prefix

    def _joined(self):
        return select(Borrowing, Item).join(Item, Borrowing.item_id == Item.id, isouter=True)

    def get(self, borrowing_id: int) -> Borrowing:
        borrowing = self.session.get(Borrowing, borrowing_id)
        if not borrowing:
            raise NotFound()
        return borrowing

    def get_by_code(self, code: str) -> Borrowing:
        borrowing = self.session.exec(
            select(Borrowing).where(Borrowing.code == code.strip())
        ).first()
        if not borrowing:
            raise NotFound(f"Borrowing not found: {code}")
        return borrowing

    def read(self, borrowing_id: int) -> BorrowingRead:
        row = self.session.exec(self._joined().where(Borrowing.id == borrowing_id)).first()
        if not row:
            raise NotFound()
        return to_read(*row)

    def read_by_code(self, code: str) -> BorrowingRead:
        row = self.session.exec(self._joined().where(Borrowing.code == code.strip())).first()
        if not row:
            raise NotFound(f"Borrowing not found: {code}")
        return to_read(*row)

    def count(self, status: Optional[BorrowingStatus] = None) -> int:
        stmt = select(func.count()).select_from(Borrowing)
        if status is not None:
            stmt = stmt.where(Borrowing.status == status.value)
        return self.session.exec(stmt).one()

    def list(
        self,
        status: Optional[BorrowingStatus] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ):
        """Borrowings, newest first, each joined with its item's name/code/photo."""
        stmt = self._joined()
        if status is not None:
            stmt = stmt.where(Borrowing.status == status.value)
        stmt = stmt.order_by(Borrowing.created_at.desc(), Borrowing.id.desc()).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [to_read(b, item) for b, item in self.session.exec(stmt).all()]

    def insert(
        self,
        item_id: int,
        borrower: BorrowerFields,
        quantity: int,
        credential_photo: Optional[str] = None,
    ) -> Borrowing:
        code = next_borrowing_code(self.session, prefix=self.code_prefix)
        if self.session.exec(select(Borrowing.id).where(Borrowing.code == code)).first() is not None:
            raise DuplicateCode(code)

        now = utcnow()
        borrowing = Borrowing(
            code=code,
            item_id=item_id,
            borrower_name=borrower.borrower_name.strip(),
            contact=(borrower.contact or "").strip() or None,
            purpose=borrower.purpose.strip(),
            staff=borrower.staff.strip(),
            quantity=quantity,
            credential_photo=credential_photo or None,
            loan_at=now,
            status=BorrowingStatus.BORROWED.value,
            created_at=now,
        )
        self.session.add(borrowing)
        try:
            self.session.flush()
        except IntegrityError:
            raise DuplicateCode(code)
        return borrowing

    def mark_returned(self, code: str, signature: Optional[str] = None) -> Borrowing:
        """Flip one ``Borrowed`` record to ``Returned``.

        The status test is part of the UPDATE itself, so of two concurrent
        returns of the same code exactly one changes a row.
        """
        code = (code or "").strip()
        values: dict[str, Any] = {
            "status": BorrowingStatus.RETURNED.value,
            "return_at": utcnow(),
        }
        if signature:
            values["signature"] = signature

        result = self.session.exec(
            update(Borrowing)
            .where(Borrowing.code == code, Borrowing.status == BorrowingStatus.BORROWED.value)
            .values(**values)
        )
        if result.rowcount == 0:
            raise NotFoundOrAlreadyReturned(code)

        borrowing = self.get_by_code(code)
        self.session.refresh(borrowing)
        return borrowing

    def update_metadata(self, borrowing_id: int, fields: dict[str, Any]) -> Borrowing:
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"fields not editable: {', '.join(sorted(unknown))}")

        borrowing = self.get(borrowing_id)
        for field, value in fields.items():
            if field in REQUIRED_FIELDS:
                value = (value or "").strip()
                if not value:
                    raise ValidationError(f"{field} must not be empty")
            setattr(borrowing, field, value)

        self.session.add(borrowing)
        self.session.flush()
        return borrowing

    def delete(self, borrowing_id: int, status: Optional[BorrowingStatus] = None) -> int:
        """Delete one record; with ``status`` only if it is still in that state.

        Returns the number of rows removed. The status test is part of the
        DELETE, so a concurrent return and delete cannot both see ``Borrowed``.
        """
        stmt = delete(Borrowing).where(Borrowing.id == borrowing_id)
        if status is not None:
            stmt = stmt.where(Borrowing.status == status.value)
        removed = self.session.exec(stmt).rowcount
        if status is None and removed == 0:
            raise NotFound()
        return removed

    def statistics(self) -> Statistics:
        total_items = self.session.exec(select(func.count()).select_from(Item)).one()
        stock, lent = self.session.exec(
            select(
                func.coalesce(func.sum(Item.total_stock), 0),
                func.coalesce(func.sum(Item.lent_quantity), 0),
            )
        ).one()
        stock = int(stock or 0)
        lent = int(lent or 0)

        return Statistics(
            total_items=total_items,
            total_borrowings=self.count(),
            active_borrowings=self.count(BorrowingStatus.BORROWED),
            completed_borrowings=self.count(BorrowingStatus.RETURNED),
            total_stock=stock,
            total_lent=lent,
            total_available=stock - lent,
        )
