import copy

from catalog.services.merge import dropped_fields, is_locked, locked_conflicts, merge


def test_first_version_takes_everything_and_ignores_locks():
    result = merge(None, {"name": "Kettle", "price": 10}, ["price"])
    assert result == {"name": "Kettle", "price": 10}


def test_locked_field_keeps_current_value():
    current = {"name": "Old", "price": 19.99}
    result = merge(current, {"name": "New Name", "price": 9.99}, ["price"])
    assert result == {"name": "New Name", "price": 19.99}


def test_fields_absent_from_patch_are_kept():
    result = merge({"name": "Old", "color": "red"}, {"name": "New"})
    assert result == {"name": "New", "color": "red"}


def test_arrays_and_objects_replace_wholesale():
    current = {"images": ["a", "b", "c"], "brand": {"brand_id": "b1", "label": "A"}}
    result = merge(current, {"images": ["z"], "brand": {"brand_id": "b2"}})
    assert result == {"images": ["z"], "brand": {"brand_id": "b2"}}


def test_locked_ancestor_blocks_nested_path():
    current = {"brand": {"brand_id": "b1", "label": "Acme"}}
    result = merge(current, {"brand.label": "Other"}, ["brand"])
    assert result == current


def test_locked_subpath_survives_object_replacement():
    current = {"brand": {"brand_id": "b1", "label": "Acme"}}
    result = merge(current, {"brand": {"brand_id": "b2", "label": "Other"}}, ["brand.label"])
    assert result == {"brand": {"brand_id": "b2", "label": "Acme"}}


def test_locked_subpath_absent_in_current_stays_absent():
    result = merge({"brand": {"brand_id": "b1"}}, {"brand": {"label": "X"}}, ["brand.label"])
    assert result == {"brand": {}}


def test_lock_into_array_pins_whole_array():
    current = {"images": [{"url": "a"}, {"url": "b"}]}
    result = merge(current, {"images": [{"url": "z"}]}, ["images.0.url"])
    assert result == current


def test_merge_does_not_mutate_inputs():
    current = {"brand": {"brand_id": "b1", "label": "Acme"}, "tags": ["x"]}
    incoming = {"brand": {"brand_id": "b2"}, "tags": ["y"]}
    snapshot_current, snapshot_incoming = copy.deepcopy(current), copy.deepcopy(incoming)
    merge(current, incoming, ["brand.label"])
    assert current == snapshot_current
    assert incoming == snapshot_incoming


def test_merge_is_idempotent():
    current = {"name": "Old", "price": 19.99, "brand": {"brand_id": "b1", "label": "A"}}
    patch = {"name": "New", "price": 1.0, "brand": {"brand_id": "b2", "label": "B"}}
    locked = ["price", "brand.label"]
    once = merge(current, patch, locked)
    assert merge(once, patch, locked) == once


def test_locked_value_never_takes_incoming():
    current = {"price": 19.99}
    for incoming_price in (0, 9.99, None, 100):
        assert merge(current, {"price": incoming_price}, ["price"])["price"] == 19.99


def test_is_locked_and_dropped_fields():
    assert is_locked("brand.label", ["brand"])
    assert not is_locked("brand", ["brand.label"])
    assert not is_locked("brandname", ["brand"])
    assert dropped_fields({"price": 1, "name": "x", "brand.label": "y"}, ["price", "brand"]) == [
        "price",
        "brand.label",
    ]


def test_locked_conflicts_report_disagreeing_values_only():
    current = {"price": 19.99, "name": "Kettle", "dimensions": {"width": 20, "height": 30}}
    incoming = {
        "price": 9.99,
        "name": "Kettle",
        "dimensions": {"width": 25, "height": 35},
    }

    conflicts = locked_conflicts(current, incoming, ["price", "name", "dimensions.width"])

    assert conflicts == [("price", 19.99, 9.99), ("dimensions.width", 20, 25)]
    assert locked_conflicts(None, incoming, ["price"]) == []
    assert locked_conflicts(current, {"dimensions": {"height": 1}}, ["dimensions.width"]) == []
