from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    # 一律带时区的 UTC；列类型用 DateTime(timezone=True)
    return datetime.now(timezone.utc)


def _ts(**kwargs):
    return Field(sa_type=DateTime(timezone=True), **kwargs)


class Admin(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str
    full_name: str = Field(default="")
    created_at: datetime = _ts(default_factory=utcnow)


class Item(SQLModel, table=True):
    __table_args__ = (
        CheckConstraint("total_stock >= 0", name="ck_item_total_stock"),
        CheckConstraint(
            "lent_quantity >= 0 AND lent_quantity <= total_stock",
            name="ck_item_lent_quantity",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(index=True, unique=True)
    name: str = Field(index=True)
    total_stock: int = Field(default=0)
    lent_quantity: int = Field(default=0)  # 只有借还流程能改
    photo: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = _ts(default_factory=utcnow, index=True)

    @property
    def available(self) -> int:
        return self.total_stock - self.lent_quantity


class Borrowing(SQLModel, table=True):
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_borrowing_quantity"),
        CheckConstraint(
            "(status = 'Borrowed' AND return_at IS NULL)"
            " OR (status = 'Returned' AND return_at IS NOT NULL)",
            name="ck_borrowing_status_return_at",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(index=True, unique=True)

    # 物品被删后历史记录保留，item_id 置空
    item_id: Optional[int] = Field(default=None, foreign_key="item.id", index=True)

    borrower_name: str
    contact: Optional[str] = None
    purpose: str
    staff: str  # 陪同老师
    quantity: int

    credential_photo: Optional[str] = None
    signature: Optional[str] = None  # 归还时的签名/核验照片

    loan_at: datetime = _ts(default_factory=utcnow)
    return_at: Optional[datetime] = _ts(default=None)
    status: str = Field(default="Borrowed", index=True)  # Borrowed / Returned

    created_at: datetime = _ts(default_factory=utcnow, index=True)


class BorrowingCodeCounter(SQLModel, table=True):
    __tablename__ = "borrowing_code_counter"

    prefix: str = Field(primary_key=True)
    year: int = Field(primary_key=True)
    last_value: int = Field(default=0)
