import os

# 就算 .env 不在也能跑；模块级 engine 用内存库，不落盘
os.environ.setdefault("SECRET_KEY", "test_secret")
os.environ.setdefault("ACCESS_TOKEN_EXPIRE_MINUTES", "120")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, select

from lending.db import create_db_and_tables, get_session, make_engine, unit_of_work
from lending.main import app
from lending.models import Borrowing, Item
from lending.schemas import BorrowerFields, BorrowingStatus
from lending.services.items import ItemStore


@pytest.fixture()
def engine():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture()
def client(engine):
    def override_get_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture()
def admin_headers(client):
    client.post(
        "/admin/register",
        json={"username": "admin", "password": "admin123", "full_name": "Admin TKJ"},
    )
    r = client.post("/admin/login", data={"username": "admin", "password": "admin123"})
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture()
def borrower():
    return BorrowerFields(
        borrower_name="Budi",
        contact="081234567890",
        purpose="Praktik jaringan",
        staff="Pak Agus",
    )


@pytest.fixture()
def make_item(session):
    def _make(total_stock: int = 10, name: str = "Kabel LAN", code: str | None = None) -> Item:
        with unit_of_work(session):
            item = ItemStore(session).create(name=name, total_stock=total_stock, code=code)
        session.refresh(item)
        return item

    return _make


@pytest.fixture()
def check_consistency(session):
    return lambda: assert_consistent(session)


def assert_consistent(session: Session) -> None:
    """Stock counters match the active borrowings and every row is in range."""
    session.expire_all()
    for item in session.exec(select(Item)).all():
        assert 0 <= item.lent_quantity <= item.total_stock
        active = session.exec(
            select(Borrowing).where(
                Borrowing.item_id == item.id,
                Borrowing.status == BorrowingStatus.BORROWED.value,
            )
        ).all()
        assert item.lent_quantity == sum(b.quantity for b in active)

    for b in session.exec(select(Borrowing)).all():
        assert (b.status == BorrowingStatus.BORROWED.value) == (b.return_at is None)
