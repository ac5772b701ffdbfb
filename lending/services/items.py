import logging
from typing import Any, Optional

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from lending.errors import (
    DuplicateCode,
    HasActiveBorrowings,
    InsufficientStock,
    ItemNotFound,
    ValidationError,
)
from lending.models import Borrowing, Item
from lending.schemas import BorrowingStatus
from lending.services.codes import new_item_code

logger = logging.getLogger(__name__)

# 管理员能改的字段；code / lent_quantity 不在其中
EDITABLE_FIELDS = ("name", "total_stock", "photo", "notes")


class ItemStore:
    """Item records and the ``lent_quantity`` counter.

    Nothing here commits: callers wrap calls in ``unit_of_work`` so that a
    stock change and the ledger write that caused it land together.
    """

    def __init__(self, session: Session, code_prefix: str = "TKJ"):
        self.session = session
        self.code_prefix = code_prefix

    def get(self, item_id: int) -> Item:
        item = self.session.get(Item, item_id)
        if not item:
            raise ItemNotFound()
        return item

    def get_by_code(self, code: str) -> Item:
        item = self.session.exec(select(Item).where(Item.code == code.strip())).first()
        if not item:
            raise ItemNotFound(f"Item not found: {code}")
        return item

    def list(self, q: Optional[str] = None) -> list[Item]:
        stmt = select(Item)
        if q and q.strip():
            term = q.strip()
            stmt = stmt.where(or_(Item.name.contains(term), Item.code.contains(term)))
        stmt = stmt.order_by(Item.created_at.desc(), Item.id.desc())
        return list(self.session.exec(stmt).all())

    def create(
        self,
        name: str,
        total_stock: int,
        code: Optional[str] = None,
        photo: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Item:
        name = (name or "").strip()
        if not name:
            raise ValidationError("name is required")
        if total_stock is None or total_stock < 0:
            raise ValidationError("total_stock must be >= 0")

        code = (code or "").strip() or new_item_code(self.session, name, prefix=self.code_prefix)
        if self.session.exec(select(Item.id).where(Item.code == code)).first() is not None:
            raise DuplicateCode(code)

        item = Item(
            code=code,
            name=name,
            total_stock=total_stock,
            lent_quantity=0,
            photo=photo or None,
            notes=notes or None,
        )
        self.session.add(item)
        try:
            self.session.flush()
        except IntegrityError:
            # 并发下 unique 冲突兜底
            raise DuplicateCode(code)
        logger.info("item created id=%s code=%s stock=%s", item.id, item.code, item.total_stock)
        return item

    def update_metadata(self, item_id: int, fields: dict[str, Any]) -> Item:
        values = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"fields not editable: {', '.join(sorted(unknown))}")
        if "name" in values:
            values["name"] = (values["name"] or "").strip()
            if not values["name"]:
                raise ValidationError("name must not be empty")

        if not values:
            return self.get(item_id)

        stmt = update(Item).where(Item.id == item_id)
        new_stock = values.get("total_stock")
        if new_stock is not None:
            if new_stock < 0:
                raise ValidationError("total_stock must be >= 0")
            # 库存不能改到比已借出的还少；判断和写入在同一条语句里
            stmt = stmt.where(Item.lent_quantity <= new_stock)
        elif "total_stock" in values:
            raise ValidationError("total_stock must not be null")

        result = self.session.exec(stmt.values(**values))
        if result.rowcount == 0:
            item = self.get(item_id)
            raise ValidationError(
                f"total_stock {new_stock} is below the quantity currently lent ({item.lent_quantity})"
            )

        item = self.get(item_id)
        self.session.refresh(item)
        return item

    def adjust_lent(self, item_id: int, delta: int) -> Item:
        """Apply ``lent_quantity += delta`` only if it stays within ``[0, total_stock]``.

        Bounds check and write are one conditional UPDATE, so concurrent
        callers cannot both pass the check on a stale read.
        """
        new_lent = Item.lent_quantity + delta
        result = self.session.exec(
            update(Item)
            .where(Item.id == item_id, new_lent >= 0, new_lent <= Item.total_stock)
            .values(lent_quantity=new_lent)
        )
        if result.rowcount == 0:
            item = self.session.get(Item, item_id, populate_existing=True)
            if not item:
                raise ItemNotFound()
            raise InsufficientStock(available=item.available, requested=delta if delta > 0 else None)

        item = self.session.get(Item, item_id)
        self.session.refresh(item)
        return item

    def active_borrowings(self, item_id: int) -> int:
        return self.session.exec(
            select(func.count())
            .select_from(Borrowing)
            .where(Borrowing.item_id == item_id, Borrowing.status == BorrowingStatus.BORROWED.value)
        ).one()

    def delete(self, item_id: int) -> None:
        item = self.get(item_id)
        active = self.active_borrowings(item_id)
        if active:
            raise HasActiveBorrowings(item_id, active)

        # 已归还的记录留作历史，只断开关联
        self.session.exec(
            update(Borrowing).where(Borrowing.item_id == item_id).values(item_id=None)
        )
        self.session.delete(item)
        self.session.flush()
        logger.info("item deleted id=%s code=%s", item_id, item.code)
