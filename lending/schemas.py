from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class AdminCreate(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=1)
    full_name: str = Field(..., min_length=1, max_length=100)


class AdminRead(BaseModel):
    id: int
    username: str
    full_name: str
    created_at: datetime


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class BorrowingStatus(str, Enum):
    BORROWED = "Borrowed"
    RETURNED = "Returned"


class ItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    # 不填就按名称缩写自动生成（TKJ-XXXX）
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    total_stock: int = Field(..., ge=0, le=100000)
    photo: Optional[str] = None
    notes: Optional[str] = None


class ItemUpdate(BaseModel):
    """Admin-editable item fields. ``code`` and ``lent_quantity`` are not here."""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    total_stock: Optional[int] = Field(None, ge=0, le=100000)
    photo: Optional[str] = None
    notes: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class ItemRead(BaseModel):
    id: int
    code: str
    name: str
    total_stock: int
    lent_quantity: int
    photo: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def available(self) -> int:
        return self.total_stock - self.lent_quantity


class BorrowerFields(BaseModel):
    borrower_name: Optional[str] = None
    contact: Optional[str] = None
    purpose: Optional[str] = None
    staff: Optional[str] = None


class BorrowingCreate(BorrowerFields):
    item_id: int
    quantity: int
    credential_photo: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "item_id": 1,
                    "borrower_name": "Budi",
                    "contact": "0812xxxx",
                    "purpose": "Praktik jaringan",
                    "staff": "Pak Agus",
                    "quantity": 2,
                }
            ]
        }
    }


class BorrowingUpdate(BaseModel):
    """Metadata-only edit. Status and quantity only change through return/delete."""

    borrower_name: Optional[str] = Field(None, min_length=1)
    contact: Optional[str] = None
    purpose: Optional[str] = Field(None, min_length=1)
    staff: Optional[str] = Field(None, min_length=1)

    model_config = ConfigDict(extra="forbid")


class BorrowingCreated(BaseModel):
    id: int
    code: str
    item_id: int
    borrower_name: str
    quantity: int


class ReturnRequest(BaseModel):
    signature: Optional[str] = None


class ReturnResult(BaseModel):
    code: str
    item_id: Optional[int] = None
    quantity: int
    return_at: datetime


class BorrowingRead(BaseModel):
    id: int
    code: str
    item_id: Optional[int] = None
    borrower_name: str
    contact: Optional[str] = None
    purpose: str
    staff: str
    quantity: int
    credential_photo: Optional[str] = None
    signature: Optional[str] = None
    loan_at: datetime
    return_at: Optional[datetime] = None
    status: BorrowingStatus
    created_at: datetime

    # 关联物品信息（只读展示）
    item_name: Optional[str] = None
    item_code: Optional[str] = None
    item_photo: Optional[str] = None


class BorrowingListResponse(BaseModel):
    items: list[BorrowingRead]
    total: int
    limit: int
    offset: int
    status: Optional[BorrowingStatus] = None


class Statistics(BaseModel):
    total_items: int = 0
    total_borrowings: int = 0
    active_borrowings: int = 0
    completed_borrowings: int = 0
    total_stock: int = 0
    total_lent: int = 0
    total_available: int = 0
