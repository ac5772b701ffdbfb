import threading

import pytest
from sqlmodel import Session, select

from lending.db import create_db_and_tables, make_engine, unit_of_work
from lending.errors import InsufficientStock, NotFoundOrAlreadyReturned
from lending.models import Borrowing, Item
from lending.schemas import BorrowerFields
from lending.services.coordinator import BorrowingCoordinator
from lending.services.items import ItemStore


@pytest.fixture()
def file_engine(tmp_path):
    # 内存库只有一个连接，测并发要用文件库
    engine = make_engine(f"sqlite:///{tmp_path / 'race.db'}")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


def _new_item(engine, total_stock):
    with Session(engine) as s:
        with unit_of_work(s):
            item = ItemStore(s).create(name="Crimping Tool", total_stock=total_stock)
        return item.id


def _run_concurrently(n, target):
    barrier = threading.Barrier(n)
    results = []

    def worker(i):
        barrier.wait()
        results.append(target(i))

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return results


def _borrow(engine, item_id, quantity):
    borrower = BorrowerFields(borrower_name="Siswa", purpose="Praktik", staff="Bu Rina")

    def attempt(i):
        with Session(engine) as s:
            try:
                return "ok", BorrowingCoordinator(s).create(item_id, borrower, quantity).code
            except InsufficientStock as e:
                return "insufficient", e.available

    return attempt


def _state(engine, item_id):
    with Session(engine) as s:
        item = s.get(Item, item_id)
        borrowings = s.exec(select(Borrowing).where(Borrowing.item_id == item_id)).all()
        return item.lent_quantity, borrowings


def test_two_creates_for_last_unit(file_engine):
    item_id = _new_item(file_engine, total_stock=1)

    results = _run_concurrently(2, _borrow(file_engine, item_id, 1))

    assert sorted(kind for kind, _ in results) == ["insufficient", "ok"]
    assert [v for kind, v in results if kind == "insufficient"] == [0]

    lent, borrowings = _state(file_engine, item_id)
    assert lent == 1
    assert len(borrowings) == 1


def test_many_creates_never_oversell(file_engine):
    item_id = _new_item(file_engine, total_stock=3)

    results = _run_concurrently(6, _borrow(file_engine, item_id, 1))

    ok_codes = [v for kind, v in results if kind == "ok"]
    assert len(ok_codes) == 3
    assert len(set(ok_codes)) == 3

    lent, borrowings = _state(file_engine, item_id)
    assert lent == 3
    assert sum(b.quantity for b in borrowings) == 3


def test_concurrent_returns_release_once(file_engine):
    item_id = _new_item(file_engine, total_stock=5)
    _, code = _borrow(file_engine, item_id, 2)(0)

    def give_back(i):
        with Session(file_engine) as s:
            try:
                BorrowingCoordinator(s).return_(code)
                return "ok"
            except NotFoundOrAlreadyReturned:
                return "already"

    results = _run_concurrently(3, give_back)

    assert sorted(results) == ["already", "already", "ok"]
    lent, _ = _state(file_engine, item_id)
    assert lent == 0


def test_return_and_delete_release_once(file_engine):
    item_id = _new_item(file_engine, total_stock=5)
    _, code = _borrow(file_engine, item_id, 2)(0)
    _borrow(file_engine, item_id, 1)(0)
    with Session(file_engine) as s:
        borrowing_id = s.exec(select(Borrowing.id).where(Borrowing.code == code)).one()

    def race(i):
        with Session(file_engine) as s:
            coord = BorrowingCoordinator(s)
            if i == 0:
                coord.delete_borrowing(borrowing_id)
                return "deleted"
            try:
                coord.return_(code)
                return "returned"
            except NotFoundOrAlreadyReturned:
                return "already"

    results = _run_concurrently(2, race)

    assert "deleted" in results
    lent, borrowings = _state(file_engine, item_id)
    # 无论谁先，2 个只归还一次
    assert lent == 1
    assert [b.quantity for b in borrowings] == [1]
