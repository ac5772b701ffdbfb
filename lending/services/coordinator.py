import logging
from typing import Optional

from sqlmodel import Session

from lending.config import Settings, get_settings
from lending.db import unit_of_work
from lending.errors import DuplicateCode, InsufficientStock, ValidationError
from lending.schemas import BorrowerFields, BorrowingCreated, BorrowingStatus, ReturnResult
from lending.services.items import ItemStore
from lending.services.ledger import REQUIRED_FIELDS, BorrowingLedger

logger = logging.getLogger(__name__)


def validate_borrow_request(borrower: BorrowerFields, quantity: Optional[int]) -> None:
    missing = [f for f in REQUIRED_FIELDS if not (getattr(borrower, f) or "").strip()]
    if missing:
        raise ValidationError(f"required fields missing: {', '.join(missing)}")
    if quantity is None or quantity <= 0:
        raise ValidationError("quantity must be > 0")


class BorrowingCoordinator:
    """The only writer of ``Item.lent_quantity`` and ``Borrowing.status``.

    Each public method is one atomic unit: the ledger write and the stock
    counter change commit together or not at all.
    """

    def __init__(self, session: Session, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()
        self.items = ItemStore(session, code_prefix=self.settings.item_code_prefix)
        self.ledger = BorrowingLedger(session, code_prefix=self.settings.borrowing_code_prefix)

    def create(
        self,
        item_id: int,
        borrower: BorrowerFields,
        quantity: int,
        credential_photo: Optional[str] = None,
    ) -> BorrowingCreated:
        validate_borrow_request(borrower, quantity)

        attempts = max(1, self.settings.code_max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return self._create_once(item_id, borrower, quantity, credential_photo)
            except DuplicateCode as e:
                # 单号撞了：整单回滚后换个号重来
                logger.warning("borrowing code collision %s (attempt %s/%s)", e.duplicate, attempt, attempts)
                if attempt == attempts:
                    raise

    def _create_once(
        self,
        item_id: int,
        borrower: BorrowerFields,
        quantity: int,
        credential_photo: Optional[str],
    ) -> BorrowingCreated:
        with unit_of_work(self.session):
            item = self.items.get(item_id)
            available = item.available
            if quantity > available:
                raise InsufficientStock(available=available, requested=quantity)

            borrowing = self.ledger.insert(item.id, borrower, quantity, credential_photo)
            # 条件更新再兜一次：并发时上面读到的 available 可能已经过期
            self.items.adjust_lent(item.id, +quantity)

            created = BorrowingCreated(
                id=borrowing.id,
                code=borrowing.code,
                item_id=item.id,
                borrower_name=borrowing.borrower_name,
                quantity=borrowing.quantity,
            )

        logger.info(
            "borrowing created code=%s item=%s qty=%s", created.code, created.item_id, created.quantity
        )
        return created

    def return_(self, code: str, signature: Optional[str] = None) -> ReturnResult:
        with unit_of_work(self.session):
            borrowing = self.ledger.mark_returned(code, signature=signature)
            # 用借出时记录的数量归还，不重新计算
            if borrowing.item_id is not None:
                self.items.adjust_lent(borrowing.item_id, -borrowing.quantity)

            result = ReturnResult(
                code=borrowing.code,
                item_id=borrowing.item_id,
                quantity=borrowing.quantity,
                return_at=borrowing.return_at,
            )

        logger.info("borrowing returned code=%s item=%s qty=%s", result.code, result.item_id, result.quantity)
        return result

    def delete_borrowing(self, borrowing_id: int) -> None:
        with unit_of_work(self.session):
            borrowing = self.ledger.get(borrowing_id)
            code, item_id, quantity = borrowing.code, borrowing.item_id, borrowing.quantity

            # 先按“在借”条件删；删到了才归还库存，和并发归还只会有一个生效
            released = self.ledger.delete(borrowing_id, status=BorrowingStatus.BORROWED) == 1
            if released:
                if item_id is not None:
                    self.items.adjust_lent(item_id, -quantity)
            else:
                self.ledger.delete(borrowing_id)

        logger.info("borrowing deleted code=%s released=%s", code, quantity if released else 0)

    def delete_item(self, item_id: int) -> None:
        # 检查“有无在借”和删除放在同一个事务里，避免中间插进一笔借用
        with unit_of_work(self.session):
            self.items.delete(item_id)
