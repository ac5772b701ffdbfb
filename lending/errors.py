from fastapi import HTTPException


class LendingError(Exception):
    """Base of every failure the lending core reports to its caller."""

    status_code = 400
    code = "LENDING_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(LendingError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFound(LendingError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, message: str = "Borrowing not found"):
        super().__init__(message)


class ItemNotFound(NotFound):
    code = "ITEM_NOT_FOUND"

    def __init__(self, message: str = "Item not found"):
        super().__init__(message)


class NotFoundOrAlreadyReturned(NotFound):
    code = "NOT_FOUND_OR_ALREADY_RETURNED"

    def __init__(self, code: str):
        super().__init__(f"Borrowing {code} not found or already returned")
        self.borrowing_code = code


class DuplicateCode(LendingError):
    status_code = 409
    code = "DUPLICATE_CODE"

    def __init__(self, code: str):
        super().__init__(f"Code already in use: {code}")
        self.duplicate = code


class InsufficientStock(LendingError):
    status_code = 400
    code = "INSUFFICIENT_STOCK"

    def __init__(self, available: int, requested: int | None = None):
        msg = f"Insufficient stock. available: {available}"
        if requested is not None:
            msg += f", requested: {requested}"
        super().__init__(msg)
        self.available = available
        self.requested = requested

    def to_detail(self) -> dict:
        return {**super().to_detail(), "available": self.available}


class HasActiveBorrowings(LendingError):
    status_code = 409
    code = "HAS_ACTIVE_BORROWINGS"

    def __init__(self, item_id: int, active: int):
        super().__init__(f"Item {item_id} still has {active} active borrowing(s)")
        self.item_id = item_id
        self.active = active


class StorageFailure(LendingError):
    status_code = 503
    code = "STORAGE_FAILURE"

    def __init__(self, message: str = "storage unavailable"):
        super().__init__(f"Storage failure: {message}")


def _auth_401(code: str, message: str) -> HTTPException:
    # 保留 WWW-Authenticate，符合 Bearer 规范
    return HTTPException(
        status_code=401,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )
