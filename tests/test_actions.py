import pytest

from services import actions, inventory, memory
from services.errors import PersistenceError
from services.filters import FilterDescriptor
from services.intent import ActionIntent, ActionKind, ItemPayload
from stock_brain.config import ActionPolicy

ORG = "org-acme"
OTHER_ORG = "org-other"


@pytest.fixture(autouse=True)
def setup_db(tmp_path):
    original = memory.DB_PATH
    memory.DB_PATH = tmp_path / "test_actions.db"
    memory.init_db()
    con = memory.get_conn()
    try:
        con.executemany(
            "INSERT INTO organizations (id, name, subscription_tier) VALUES (?, ?, 'free')",
            [(ORG, "Acme Deli"), (OTHER_ORG, "Other Shop")],
        )
        con.commit()
    finally:
        con.close()
    yield
    memory.DB_PATH = original


def _add(name: str, org: str = ORG, **fields) -> int:
    return inventory.insert_item(org, {"name": name, **fields})


def _ctx(**kwargs) -> actions.ExecutionContext:
    return actions.ExecutionContext(org_id=kwargs.pop("org_id", ORG), **kwargs)


def _intent(kind: ActionKind, value=None, **filters) -> ActionIntent:
    return ActionIntent(
        kind=kind,
        filters=FilterDescriptor(**filters),
        value=value,
        confidence=0.95,
    )


def _quantity(item_id: int, org: str = ORG) -> int:
    return int(inventory.get_item(org, item_id)["quantity"])


def test_decrease_floors_at_zero_and_logs_history():
    item_id = _add("Mixed Nuts", quantity=10)

    outcome = actions.execute(_ctx(), _intent(ActionKind.DECREASE_QUANTITY, "15", name_contains="Nuts"))

    assert outcome.success
    assert outcome.affected == 1
    assert _quantity(item_id) == 0
    history = inventory.get_history(ORG, item_id)
    assert len(history) == 1
    assert history[0]["previous_quantity"] == 10
    assert history[0]["new_quantity"] == 0
    assert history[0]["change_type"] == "sale"


@pytest.mark.parametrize("original,delta", [(0, 0), (0, 5), (5, 5), (40, 15), (3, 1000)])
def test_decrease_result_is_never_negative(original, delta):
    item_id = _add("Trail Mix", quantity=original)

    actions.execute(_ctx(), _intent(ActionKind.DECREASE_QUANTITY, str(delta), name_contains="trail"))

    assert _quantity(item_id) == max(0, original - delta)


def test_increase_uses_each_records_own_base():
    a = _add("Biltong Original", quantity=5)
    b = _add("Biltong Chilli", quantity=10)

    outcome = actions.execute(_ctx(), _intent(ActionKind.INCREASE_QUANTITY, "20", name_contains="biltong"))

    assert outcome.success
    assert outcome.affected == 2
    assert outcome.message == "Added 20 units to 2 item(s)"
    assert _quantity(a) == 25
    assert _quantity(b) == 30


def test_set_reorder_threshold_on_three_matches_stays_in_org():
    ids = [_add(f"Biltong {flavour}") for flavour in ("Original", "Peri-Peri", "Garlic")]
    foreign = _add("Biltong Original", org=OTHER_ORG, reorder_threshold=3)

    outcome = actions.execute(
        _ctx(), _intent(ActionKind.SET_REORDER_THRESHOLD, "50", name_contains="Biltong")
    )

    assert outcome.success
    assert outcome.affected == 3
    for item_id in ids:
        assert inventory.get_item(ORG, item_id)["reorder_threshold"] == 50
    assert inventory.get_item(OTHER_ORG, foreign)["reorder_threshold"] == 3


def test_set_quantity_overwrites_all_matches():
    a = _add("Rooibos Tea", quantity=3)
    b = _add("Rooibos Latte Mix", quantity=80)

    outcome = actions.execute(_ctx(), _intent(ActionKind.SET_QUANTITY, "50", name_contains="rooibos"))

    assert outcome.message == "Set quantity to 50 for 2 item(s)"
    assert _quantity(a) == 50
    assert _quantity(b) == 50
    assert [h["change_type"] for h in inventory.get_history(ORG)] == ["adjustment", "adjustment"]


def test_set_expiry_matches_by_invoice():
    a = _add("Droewors", invoice="INV-042")
    b = _add("Droewors", invoice="INV-043")

    outcome = actions.execute(_ctx(), _intent(ActionKind.SET_EXPIRY, "2026-03-30", invoice="INV-042"))

    assert outcome.affected == 1
    assert inventory.get_item(ORG, a)["expiration_date"] == "2026-03-30"
    assert inventory.get_item(ORG, b)["expiration_date"] is None


def test_no_matching_records_is_an_unsuccessful_outcome():
    _add("Biltong")

    outcome = actions.execute(_ctx(), _intent(ActionKind.MARK_ORDERED, name_contains="Rusks"))

    assert not outcome.success
    assert outcome.affected == 0
    assert outcome.message == actions.NO_MATCH_MESSAGE


def test_delete_refused_above_cap():
    for n in range(7):
        _add(f"Biltong {n}")

    outcome = actions.execute(_ctx(), _intent(ActionKind.DELETE_ITEM, name_contains="Biltong"))

    assert not outcome.success
    assert outcome.affected == 0
    assert "Found 7 matching items" in outcome.message
    assert inventory.count_items(ORG) == 7


def test_delete_cap_comes_from_policy():
    _add("Biltong A")
    _add("Biltong B")

    outcome = actions.execute(
        _ctx(policy=ActionPolicy(delete_cap=1)),
        _intent(ActionKind.DELETE_ITEM, name_contains="Biltong"),
    )

    assert not outcome.success
    assert inventory.count_items(ORG) == 2


def test_delete_within_cap_removes_only_matches():
    _add("Expired Biltong")
    _add("Expired Droewors")
    keep = _add("Fresh Biltong")

    outcome = actions.execute(_ctx(), _intent(ActionKind.DELETE_ITEM, name_contains="expired"))

    assert outcome.success
    assert outcome.affected == 2
    assert outcome.message == "Deleted 2 item(s) from inventory"
    assert sorted(outcome.affected_names) == ["Expired Biltong", "Expired Droewors"]
    assert [i["id"] for i in inventory.find_items(ORG)] == [keep]


def test_create_item_generates_sku():
    outcome = actions.execute(
        _ctx(),
        ActionIntent(
            kind=ActionKind.CREATE_ITEM,
            item=ItemPayload(name="Beef Biltong", quantity=25, category="meat", operational_category="x"),
            confidence=0.9,
        ),
    )

    assert outcome.success
    assert outcome.affected == 1
    item = inventory.get_item(ORG, outcome.item_ids[0])
    assert item["sku"] == "MET-BEEBIL-001"
    assert item["quantity"] == 25
    assert item["operational_category"] is None
    assert outcome.message == 'Created "Beef Biltong" (SKU: MET-BEEBIL-001, Type: stock) with 25 units'


def test_create_operational_item_keeps_sub_category():
    outcome = actions.execute(
        _ctx(),
        ActionIntent(
            kind=ActionKind.CREATE_ITEM,
            item=ItemPayload(name="Paper Towels", item_type="operational", operational_category="cleaning"),
            confidence=0.9,
        ),
    )

    item = inventory.get_item(ORG, outcome.item_ids[0])
    assert item["item_type"] == "operational"
    assert item["operational_category"] == "cleaning"
    assert item["sku"] == "CLN-PAPTOW-001"


def test_create_item_refused_at_tier_limit():
    _add("One")
    _add("Two")
    config = {"plans": {"free": {"items": 2, "ai_requests": 50}}}

    outcome = actions.execute(
        _ctx(config=config),
        ActionIntent(kind=ActionKind.CREATE_ITEM, item=ItemPayload(name="Three"), confidence=0.9),
    )

    assert not outcome.success
    assert "2 product limit" in outcome.message
    assert inventory.count_items(ORG) == 2


def test_create_item_ignores_limit_when_billing_exempt():
    _add("One")
    config = {"plans": {"free": {"items": 1, "ai_requests": 50}}}

    outcome = actions.execute(
        _ctx(config=config, billing_exempt=True),
        ActionIntent(kind=ActionKind.CREATE_ITEM, item=ItemPayload(name="Two"), confidence=0.9),
    )

    assert outcome.success
    assert inventory.count_items(ORG) == 2


def test_create_item_refused_when_item_count_is_unreadable(monkeypatch):
    def broken_count(org_id):
        raise PersistenceError("database is locked")

    monkeypatch.setattr(inventory, "count_items", broken_count)

    outcome = actions.execute(
        _ctx(),
        ActionIntent(kind=ActionKind.CREATE_ITEM, item=ItemPayload(name="Biltong"), confidence=0.9),
    )

    assert not outcome.success
    assert outcome.message == "Failed to check inventory limit"
    assert inventory.list_skus(ORG) == []


def test_create_item_without_payload_fails():
    outcome = actions.execute(_ctx(), ActionIntent(kind=ActionKind.CREATE_ITEM, confidence=0.9))

    assert not outcome.success
    assert "name is required" in outcome.message
    assert inventory.count_items(ORG) == 0


def test_edit_field_outside_allow_list_is_rejected():
    item_id = _add("Biltong", quantity=4)
    intent = ActionIntent(
        kind=ActionKind.EDIT_FIELD,
        filters=FilterDescriptor(name_contains="Biltong"),
        value="99",
        edit_field="quantity",
        confidence=0.9,
    )

    outcome = actions.execute(_ctx(), intent)

    assert not outcome.success
    assert "Supported: name, category, sku, operational_category" in outcome.message
    assert _quantity(item_id) == 4


def test_edit_field_renames():
    item_id = _add("Biltong Orig")
    intent = ActionIntent(
        kind=ActionKind.EDIT_FIELD,
        filters=FilterDescriptor(name_contains="Orig"),
        value="Biltong Original",
        edit_field="name",
        confidence=0.9,
    )

    outcome = actions.execute(_ctx(), intent)

    assert outcome.success
    assert outcome.message == 'Updated name to "Biltong Original" for 1 item(s)'
    assert inventory.get_item(ORG, item_id)["name"] == "Biltong Original"


def test_edit_sku_must_stay_unique():
    _add("Biltong", sku="MET-BILTON-001")
    other = _add("Droewors")
    intent = ActionIntent(
        kind=ActionKind.EDIT_FIELD,
        filters=FilterDescriptor(name_contains="Droewors"),
        value="MET-BILTON-001",
        edit_field="sku",
        confidence=0.9,
    )

    outcome = actions.execute(_ctx(), intent)

    assert not outcome.success
    assert inventory.get_item(ORG, other)["sku"] is None


def test_edit_sku_refuses_multiple_matches():
    _add("Biltong A")
    _add("Biltong B")
    intent = ActionIntent(
        kind=ActionKind.EDIT_FIELD,
        filters=FilterDescriptor(name_contains="Biltong"),
        value="MET-NEW-001",
        edit_field="sku",
        confidence=0.9,
    )

    outcome = actions.execute(_ctx(), intent)

    assert not outcome.success
    assert inventory.list_skus(ORG) == []


def test_edit_sku_reports_unreadable_codes(monkeypatch):
    item_id = _add("Droewors")

    def broken_list_skus(org_id):
        raise PersistenceError("database is locked")

    monkeypatch.setattr(inventory, "list_skus", broken_list_skus)
    intent = ActionIntent(
        kind=ActionKind.EDIT_FIELD,
        filters=FilterDescriptor(name_contains="Droewors"),
        value="MET-DROEWO-001",
        edit_field="sku",
        confidence=0.9,
    )

    outcome = actions.execute(_ctx(), intent)

    assert not outcome.success
    assert outcome.errors == ["database is locked"]
    assert inventory.get_item(ORG, item_id)["sku"] is None


def test_ordered_then_received_adds_exact_quantity():
    item_id = _add("Biltong", quantity=10)

    ordered = actions.execute(_ctx(), _intent(ActionKind.MARK_ORDERED, name_contains="Biltong"))
    assert ordered.message == "Marked 1 item(s) as ordered"
    assert inventory.get_item(ORG, item_id)["order_status"] == "ordered"

    received = actions.execute(_ctx(), _intent(ActionKind.MARK_RECEIVED, "12", name_contains="Biltong"))

    assert received.success
    assert received.message == "Marked 1 item(s) as received (+12 units restocked)"
    item = inventory.get_item(ORG, item_id)
    assert item["quantity"] == 22
    assert item["order_status"] is None
    assert inventory.get_history(ORG, item_id)[-1]["change_type"] == "received"


def test_received_without_quantity_only_clears_status():
    item_id = _add("Biltong", quantity=10, order_status="ordered", last_restock="2020-01-01")

    outcome = actions.execute(_ctx(), _intent(ActionKind.MARK_RECEIVED, name_contains="Biltong"))

    item = inventory.get_item(ORG, item_id)
    assert outcome.success
    assert item["quantity"] == 10
    assert item["order_status"] is None
    assert item["last_restock"] != "2020-01-01"


def test_generate_sku_unscoped_only_touches_items_without_one():
    existing = _add("Paper Towels", sku="CLN-PAPTOW-001", category="cleaning")
    large = _add("Paper Towels Large", category="cleaning")
    small = _add("Paper Towels Small", category="cleaning")

    outcome = actions.execute(_ctx(), _intent(ActionKind.GENERATE_SKU))

    assert outcome.success
    assert outcome.affected == 2
    generated = [inventory.get_item(ORG, i)["sku"] for i in (large, small)]
    assert len(set(generated)) == 2
    assert "CLN-PAPTOW-001" not in generated
    assert inventory.get_item(ORG, existing)["sku"] == "CLN-PAPTOW-001"


def test_generate_sku_when_all_matches_have_one():
    _add("Biltong", sku="MET-BILTON-001")

    outcome = actions.execute(_ctx(), _intent(ActionKind.GENERATE_SKU, name_contains="Biltong"))

    assert not outcome.success
    assert outcome.affected == 0


def test_persistence_error_stops_loop_and_keeps_earlier_writes(monkeypatch):
    a = _add("Biltong A", quantity=1)
    b = _add("Biltong B", quantity=1)
    c = _add("Biltong C", quantity=1)
    real_cas = inventory.compare_and_set_quantity
    calls = []

    def flaky_cas(org_id, item_id, expected, new, extra_fields=None):
        calls.append(item_id)
        if item_id == b:
            raise PersistenceError("disk I/O error")
        return real_cas(org_id, item_id, expected, new, extra_fields)

    monkeypatch.setattr(inventory, "compare_and_set_quantity", flaky_cas)

    outcome = actions.execute(_ctx(), _intent(ActionKind.INCREASE_QUANTITY, "5", name_contains="Biltong"))

    assert not outcome.success
    assert outcome.affected == 1
    assert "stopped after updating 1 of 3" in outcome.message
    assert outcome.errors == ["Biltong B: disk I/O error"]
    assert calls == [a, b]
    assert _quantity(a) == 6
    assert _quantity(b) == 1
    assert _quantity(c) == 1


def test_lost_race_is_retried_without_losing_the_other_write(monkeypatch):
    item_id = _add("Biltong", quantity=10)
    real_cas = inventory.compare_and_set_quantity
    raced = []

    def racing_cas(org_id, target, expected, new, extra_fields=None):
        if not raced:
            raced.append(True)
            # another request lands between our read and our write
            inventory.update_items(org_id, [target], {"quantity": 12})
        return real_cas(org_id, target, expected, new, extra_fields)

    monkeypatch.setattr(inventory, "compare_and_set_quantity", racing_cas)

    outcome = actions.execute(_ctx(), _intent(ActionKind.INCREASE_QUANTITY, "5", name_contains="Biltong"))

    assert outcome.success
    assert _quantity(item_id) == 17


def test_exhausted_retries_report_failure(monkeypatch):
    item_id = _add("Biltong", quantity=10)
    monkeypatch.setattr(inventory, "compare_and_set_quantity", lambda *args, **kwargs: False)

    outcome = actions.execute(
        _ctx(policy=ActionPolicy(cas_retries=2)),
        _intent(ActionKind.DECREASE_QUANTITY, "5", name_contains="Biltong"),
    )

    assert not outcome.success
    assert outcome.affected == 0
    assert "changed concurrently" in outcome.errors[0]
    assert _quantity(item_id) == 10


def test_increase_past_storable_quantity_fails_without_writing():
    item_id = _add("Biltong", quantity=inventory.MAX_INTEGER - 5)

    outcome = actions.execute(_ctx(), _intent(ActionKind.INCREASE_QUANTITY, "10", name_contains="Biltong"))

    assert not outcome.success
    assert outcome.affected == 0
    assert "would exceed" in outcome.errors[0]
    assert _quantity(item_id) == inventory.MAX_INTEGER - 5
    assert inventory.get_history(ORG, item_id) == []


def test_affected_names_are_sampled():
    for n in range(7):
        _add(f"Biltong {n}")

    outcome = actions.execute(_ctx(), _intent(ActionKind.MARK_ORDERED, name_contains="Biltong"))

    body = outcome.to_dict()
    assert body["items_affected"] == 7
    assert body["affected_names"] == [f"Biltong {n}" for n in range(5)]
    assert body["more_count"] == 2
    assert "item_ids" not in body


def test_apply_sequentially_collects_successes_and_first_failure():
    seen = []

    def apply(record):
        seen.append(record["id"])
        if record["id"] == 2:
            raise PersistenceError("locked")

    result = actions.apply_sequentially([{"id": 1}, {"id": 2}, {"id": 3}], apply)

    assert [r["id"] for r in result.succeeded] == [1]
    assert result.failed == {"id": 2}
    assert result.error == "locked"
    assert seen == [1, 2]


def test_unknown_kind_has_no_handler():
    outcome = actions.execute(_ctx(), _intent(ActionKind.NONE))

    assert not outcome.success
    assert outcome.message == "Unknown action type"
