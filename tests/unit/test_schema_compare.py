"""Unit tests for schema reconciliation."""

import pytest

from oplog_sync.etl.definitions import create_definition
from oplog_sync.etl.schema_compare import (
    DatasetShape,
    FieldDescriptor,
    definitions_to_shapes,
    find_drifted_datasets,
    find_new_datasets,
    find_unchanged_datasets,
    objects_to_shapes,
    reconcile,
    shapes_to_objects,
)


class TestShapeConversion:
    """Test conversion between mapping form and shapes."""

    def test_objects_to_shapes(self):
        shapes = objects_to_shapes({"users": {"name": "string", "age": "integer"}})

        assert len(shapes) == 1
        assert shapes[0].name == "users"
        assert shapes[0].field_names == frozenset({"name", "age"})

    def test_shapes_round_trip(self):
        objects = {"users": {"name": "string"}, "orders": {"total": "number"}}
        assert shapes_to_objects(objects_to_shapes(objects)) == objects

    def test_definitions_use_column_names(self):
        definition = create_definition(
            "users", {"firstName": "string", "address.city": "string"}, db_name="shop", field_case="snake"
        )
        shape = definitions_to_shapes([definition])[0]

        assert shape.name == "users"
        assert shape.field_names == frozenset({"_id", "first_name", "address_city"})


class TestReconcile:
    """Test dataset classification."""

    @pytest.fixture
    def sink(self):
        return objects_to_shapes({
            "users": {"_id": "VARCHAR(255)", "name": "VARCHAR(255)", "age": "BIGINT"},
            "orders": {"_id": "VARCHAR(255)", "total": "FLOAT"},
            "legacy": {"_id": "VARCHAR(255)"},
        })

    @pytest.fixture
    def desired(self):
        return objects_to_shapes({
            "users": {"_id": "string", "name": "string", "age": "integer"},
            "orders": {"_id": "string", "total": "number", "status": "string"},
            "products": {"_id": "string", "title": "string"},
        })

    def test_partition(self, sink, desired):
        result = reconcile(sink, desired)

        assert [s.name for s in result.new] == ["products"]
        assert [s.name for s in result.drifted] == ["orders"]
        assert [s.name for s in result.unchanged] == ["users"]

    def test_partition_is_disjoint_and_complete(self, sink, desired):
        result = reconcile(sink, desired)
        names = [s.name for s in result.new + result.drifted + result.unchanged]

        assert sorted(names) == sorted(s.name for s in desired)
        assert len(names) == len(set(names))

    def test_sink_only_tables_are_ignored(self, sink, desired):
        result = reconcile(sink, desired)
        names = [s.name for s in result.new + result.drifted + result.unchanged]

        assert "legacy" not in names

    def test_drift_annotation(self, sink, desired):
        drifted = find_drifted_datasets(sink, desired)[0]

        assert [f.field for f in drifted.added] == ["status"]
        assert drifted.removed == ()

    def test_drift_detects_removed_fields(self):
        sink = objects_to_shapes({"users": {"_id": "x", "name": "x", "nickname": "x"}})
        desired = objects_to_shapes({"users": {"_id": "string", "name": "string"}})

        drifted = find_drifted_datasets(sink, desired)

        assert len(drifted) == 1
        assert [f.field for f in drifted[0].removed] == ["nickname"]
        assert drifted[0].added == ()

    def test_drift_is_symmetric(self):
        a = objects_to_shapes({"users": {"_id": "x", "name": "x"}})
        b = objects_to_shapes({"users": {"_id": "x", "email": "x"}})

        assert len(find_drifted_datasets(a, b)) == 1
        assert len(find_drifted_datasets(b, a)) == 1

    def test_type_changes_are_not_drift(self):
        sink = objects_to_shapes({"users": {"_id": "VARCHAR(255)", "age": "TEXT"}})
        desired = objects_to_shapes({"users": {"_id": "string", "age": "integer"}})

        assert [s.name for s in find_unchanged_datasets(sink, desired)] == ["users"]

    def test_field_order_does_not_matter(self):
        sink = [DatasetShape("users", (FieldDescriptor("b", "x"), FieldDescriptor("a", "x")))]
        desired = [DatasetShape("users", (FieldDescriptor("a", "x"), FieldDescriptor("b", "x")))]

        assert find_unchanged_datasets(sink, desired)[0].name == "users"

    def test_name_matching_is_case_sensitive(self):
        sink = objects_to_shapes({"Users": {"_id": "x"}})
        desired = objects_to_shapes({"users": {"_id": "string"}})

        assert [s.name for s in find_new_datasets(sink, desired)] == ["users"]

    def test_empty_sink_makes_everything_new(self, desired):
        result = reconcile([], desired)

        assert len(result.new) == len(desired)
        assert result.drifted == [] and result.unchanged == []

    def test_report(self, sink, desired):
        result = reconcile(sink, desired)

        assert [s.name for s in result.needs_import] == ["products", "orders"]

        report = result.to_report()
        assert report["new"] == {"products": {"_id": "string", "title": "string"}}
        assert report["drifted"] == [{"name": "orders", "added": ["status"], "removed": []}]
        assert report["unchanged"] == ["users"]
