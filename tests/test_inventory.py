import pytest

from services import inventory, memory
from services.errors import PersistenceError

ORG = "org-acme"
OTHER_ORG = "org-other"


@pytest.fixture(autouse=True)
def setup_db(tmp_path):
    original = memory.DB_PATH
    memory.DB_PATH = tmp_path / "test_inventory.db"
    memory.init_db()
    con = memory.get_conn()
    try:
        con.executemany(
            "INSERT INTO organizations (id, name) VALUES (?, ?)",
            [(ORG, "Acme Deli"), (OTHER_ORG, "Other Shop")],
        )
        con.commit()
    finally:
        con.close()
    yield
    memory.DB_PATH = original


def test_insert_and_get_item():
    item_id = inventory.insert_item(ORG, {"name": "Biltong", "quantity": 12, "unknown": "dropped"})

    item = inventory.get_item(ORG, item_id)
    assert item["name"] == "Biltong"
    assert item["quantity"] == 12
    assert item["item_type"] == "stock"
    assert item["order_status"] is None


def test_insert_requires_name():
    with pytest.raises(ValueError):
        inventory.insert_item(ORG, {"quantity": 3})


def test_reads_are_scoped_to_org():
    item_id = inventory.insert_item(ORG, {"name": "Biltong"})
    inventory.insert_item(OTHER_ORG, {"name": "Droewors"})

    assert inventory.get_item(OTHER_ORG, item_id) is None
    assert [i["name"] for i in inventory.find_items(ORG)] == ["Biltong"]
    assert inventory.count_items(OTHER_ORG) == 1


def test_update_and_delete_ignore_other_orgs_ids():
    foreign = inventory.insert_item(OTHER_ORG, {"name": "Droewors", "quantity": 4})

    assert inventory.update_items(ORG, [foreign], {"quantity": 99}) == 0
    assert inventory.delete_items(ORG, [foreign]) == 0
    assert inventory.get_item(OTHER_ORG, foreign)["quantity"] == 4


def test_update_rejects_unknown_fields():
    item_id = inventory.insert_item(ORG, {"name": "Biltong"})

    with pytest.raises(ValueError):
        inventory.update_items(ORG, [item_id], {"org_id": OTHER_ORG})


def test_compare_and_set_only_writes_expected_value():
    item_id = inventory.insert_item(ORG, {"name": "Biltong", "quantity": 10})

    assert inventory.compare_and_set_quantity(ORG, item_id, 9, 20) is False
    assert inventory.compare_and_set_quantity(ORG, item_id, 10, 20, {"order_status": "ordered"}) is True
    item = inventory.get_item(ORG, item_id)
    assert item["quantity"] == 20
    assert item["order_status"] == "ordered"


def test_negative_quantity_is_a_persistence_error():
    item_id = inventory.insert_item(ORG, {"name": "Biltong", "quantity": 1})

    with pytest.raises(PersistenceError):
        inventory.update_items(ORG, [item_id], {"quantity": -1})


def test_unstorable_quantity_is_a_persistence_error():
    item_id = inventory.insert_item(ORG, {"name": "Biltong", "quantity": 1})

    with pytest.raises(PersistenceError):
        inventory.update_items(ORG, [item_id], {"quantity": 2**64})
    with pytest.raises(PersistenceError):
        inventory.compare_and_set_quantity(ORG, item_id, 1, inventory.MAX_INTEGER + 1)
    assert inventory.get_item(ORG, item_id)["quantity"] == 1


def test_list_skus_skips_blank():
    inventory.insert_item(ORG, {"name": "A", "sku": "SNK-A-001"})
    inventory.insert_item(ORG, {"name": "B", "sku": ""})
    inventory.insert_item(ORG, {"name": "C"})
    inventory.insert_item(OTHER_ORG, {"name": "D", "sku": "SNK-D-001"})

    assert inventory.list_skus(ORG) == ["SNK-A-001"]


def test_summary_rows_are_bounded():
    for n in range(5):
        inventory.insert_item(ORG, {"name": f"Item {n}"})

    rows = inventory.summary_rows(ORG, limit=3)

    assert [r["name"] for r in rows] == ["Item 0", "Item 1", "Item 2"]
    assert "org_id" not in rows[0]


def test_record_history():
    item_id = inventory.insert_item(ORG, {"name": "Biltong", "sku": "MET-BILTON-001"})

    inventory.record_history(ORG, {"id": item_id, "name": "Biltong", "sku": "MET-BILTON-001"}, 10, 4, "sale")

    history = inventory.get_history(ORG, item_id)
    assert history[0]["quantity_change"] == -6
    assert history[0]["source"] == "ai_action"
    assert inventory.get_history(OTHER_ORG) == []


def test_history_on_unreadable_datastore(tmp_path, monkeypatch):
    monkeypatch.setattr(memory, "DB_PATH", tmp_path / "uninitialized.db")

    with pytest.raises(PersistenceError):
        inventory.get_history(ORG)
