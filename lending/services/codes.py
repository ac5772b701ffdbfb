import re
from datetime import datetime
from typing import Iterable

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from lending.errors import DuplicateCode
from lending.models import Borrowing, BorrowingCodeCounter, Item, utcnow

_WORD_SPLIT = re.compile(r"[^a-zA-Z0-9]+")
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def name_abbrev(name: str, size: int = 4) -> str:
    """Four-letter abbreviation of an item name.

    Initials of each word first, then filled up with the remaining letters of
    the name, then padded with ``X``: "Kabel LAN" -> "KLAB", "Obeng" -> "OBEN".
    """
    words = [w for w in _WORD_SPLIT.split(name or "") if w]
    abbrev = "".join(w[0].upper() for w in words)[:size]

    for ch in _NON_ALNUM.sub("", name or "").upper():
        if len(abbrev) >= size:
            break
        if ch not in abbrev:
            abbrev += ch

    return (abbrev + "X" * size)[:size]


def derive_item_code(name: str, existing: Iterable[str], prefix: str = "TKJ") -> str:
    taken = set(existing)
    base = f"{prefix}-{name_abbrev(name)}"
    code = base
    suffix = 1
    while code in taken:
        code = f"{base}-{suffix}"
        suffix += 1
    return code


def new_item_code(session: Session, name: str, prefix: str = "TKJ") -> str:
    base = f"{prefix}-{name_abbrev(name)}"
    existing = session.exec(select(Item.code).where(Item.code.startswith(base))).all()
    return derive_item_code(name, existing, prefix=prefix)


def format_borrowing_code(prefix: str, year: int, seq: int) -> str:
    # 至少 3 位，超过 999 自然变长，不会回绕
    return f"{prefix}-{year}-{seq:03d}"


def next_borrowing_code(session: Session, prefix: str = "PMJ", now: datetime | None = None) -> str:
    """Issue the next borrowing code for the current year.

    The per-year counter only moves forward and lives in the same transaction
    as the borrowing insert, so a code is never handed out twice, even after
    the borrowing that carried it is deleted. If the counter lands on a code
    that is already in the ledger (imported rows, a counter reset), it jumps
    past the highest one in use.
    """
    year = (now or utcnow()).year
    where = (BorrowingCodeCounter.prefix == prefix, BorrowingCodeCounter.year == year)

    bumped = session.exec(
        update(BorrowingCodeCounter)
        .where(*where)
        .values(last_value=BorrowingCodeCounter.last_value + 1)
    )
    if bumped.rowcount == 0:
        # 今年第一单：从已有单号里接着编（兼容导入的旧数据）
        start = _highest_existing_seq(session, prefix, year)
        session.add(BorrowingCodeCounter(prefix=prefix, year=year, last_value=start + 1))
        try:
            session.flush()
        except IntegrityError:
            # 另一个事务同时建了计数行
            raise DuplicateCode(format_borrowing_code(prefix, year, start + 1))

    seq = session.exec(select(BorrowingCodeCounter.last_value).where(*where)).one()
    code = format_borrowing_code(prefix, year, seq)
    if _code_taken(session, code):
        seq = _highest_existing_seq(session, prefix, year) + 1
        session.exec(update(BorrowingCodeCounter).where(*where).values(last_value=seq))
        code = format_borrowing_code(prefix, year, seq)
    return code


def _code_taken(session: Session, code: str) -> bool:
    return session.exec(select(Borrowing.id).where(Borrowing.code == code)).first() is not None


def _highest_existing_seq(session: Session, prefix: str, year: int) -> int:
    head = f"{prefix}-{year}-"
    codes = session.exec(select(Borrowing.code).where(Borrowing.code.startswith(head))).all()
    seqs = [int(c[len(head):]) for c in codes if c[len(head):].isdigit()]
    return max(seqs, default=0)
