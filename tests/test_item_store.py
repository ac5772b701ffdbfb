import pytest

from lending.db import unit_of_work
from lending.errors import DuplicateCode, InsufficientStock, ItemNotFound, ValidationError
from lending.services.items import ItemStore


def test_create_starts_with_nothing_lent(session, make_item):
    item = make_item(total_stock=10)
    assert item.lent_quantity == 0
    assert item.available == 10
    assert item.code == "TKJ-KLAB"


def test_create_duplicate_code(session, make_item):
    make_item(code="TKJ-0001")
    with pytest.raises(DuplicateCode):
        make_item(name="Obeng", code="TKJ-0001")


def test_derived_codes_do_not_collide(session, make_item):
    a = make_item(name="Obeng")
    b = make_item(name="Obeng")
    assert a.code == "TKJ-OBEN"
    assert b.code == "TKJ-OBEN-1"


def test_get_and_get_by_code(session, make_item):
    item = make_item(code="TKJ-TANG", name="Tang")
    store = ItemStore(session)
    assert store.get(item.id).code == "TKJ-TANG"
    assert store.get_by_code(" TKJ-TANG ").id == item.id

    with pytest.raises(ItemNotFound):
        store.get(9999)
    with pytest.raises(ItemNotFound):
        store.get_by_code("TKJ-NONE")


def test_list_newest_first_and_search(session, make_item):
    make_item(name="Obeng")
    make_item(name="Tang")
    make_item(name="Kabel LAN")

    store = ItemStore(session)
    assert [i.name for i in store.list()] == ["Kabel LAN", "Tang", "Obeng"]
    assert [i.name for i in store.list("tan")] == ["Tang"]
    assert [i.name for i in store.list("TKJ-OBEN")] == ["Obeng"]


def test_adjust_lent_stays_in_bounds(session, make_item):
    item = make_item(total_stock=3)
    store = ItemStore(session)

    with unit_of_work(session):
        assert store.adjust_lent(item.id, 3).lent_quantity == 3

    with pytest.raises(InsufficientStock) as exc:
        with unit_of_work(session):
            store.adjust_lent(item.id, 1)
    assert exc.value.available == 0

    with pytest.raises(InsufficientStock):
        with unit_of_work(session):
            store.adjust_lent(item.id, -4)

    with pytest.raises(ItemNotFound):
        with unit_of_work(session):
            store.adjust_lent(9999, 1)

    assert store.get(item.id).lent_quantity == 3


def test_update_metadata(session, make_item):
    item = make_item(total_stock=5)
    store = ItemStore(session)

    with unit_of_work(session):
        updated = store.update_metadata(item.id, {"name": "Kabel UTP", "notes": "Cat6", "total_stock": 8})
    assert updated.name == "Kabel UTP"
    assert updated.notes == "Cat6"
    assert updated.total_stock == 8
    assert updated.code == "TKJ-KLAB"


def test_update_metadata_refuses_stock_below_lent(session, make_item):
    item = make_item(total_stock=5)
    store = ItemStore(session)
    with unit_of_work(session):
        store.adjust_lent(item.id, 4)

    with pytest.raises(ValidationError):
        with unit_of_work(session):
            store.update_metadata(item.id, {"total_stock": 3})

    with unit_of_work(session):
        assert store.update_metadata(item.id, {"total_stock": 4}).available == 0


def test_update_metadata_rejects_counter_and_code(session, make_item):
    item = make_item()
    store = ItemStore(session)
    with pytest.raises(ValidationError):
        store.update_metadata(item.id, {"lent_quantity": 0})
    with pytest.raises(ValidationError):
        store.update_metadata(item.id, {"code": "TKJ-NEW"})
    with pytest.raises(ItemNotFound):
        store.update_metadata(9999, {"name": "x"})


def test_update_metadata_strips_name(session, make_item):
    item = make_item()
    store = ItemStore(session)

    with unit_of_work(session):
        assert store.update_metadata(item.id, {"name": "  Kabel UTP  "}).name == "Kabel UTP"
    with pytest.raises(ValidationError):
        store.update_metadata(item.id, {"name": "   "})
