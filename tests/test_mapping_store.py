"""
tests/test_mapping_store.py
---------------------------
Unit tests for core/mapping_store.py.
Run with: python -m pytest tests/
"""
from __future__ import annotations

import dataclasses
import json
from pathlib import Path

import pytest

from schemabridge.config import CONFIG
from schemabridge.core.mapping_store import MappingRepository
from schemabridge.errors import MappingError
from schemabridge.models.mapping import (
    ColumnMapping,
    FieldTransformation,
    JoinCondition,
    MappingKind,
    TableMapping,
    TransformationKind,
)
from tests.fakes import make_table


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def repo() -> MappingRepository:
    repository = MappingRepository()
    repository.set_schemas(
        [
            make_table("CUSTOMERS", ("ID", "INTEGER"), ("NAME", "VARCHAR(50)")),
            make_table("ORDERS", ("ID", "INTEGER"), ("CUSTOMER_ID", "INTEGER")),
        ],
        [
            make_table("clientes", ("id", "INTEGER"), ("nome", "VARCHAR(60)")),
            make_table("pedidos", ("id", "INTEGER"), ("cliente", "VARCHAR")),
        ],
    )
    return repository


def column(source: str, target: str, kind: str = "INTEGER") -> ColumnMapping:
    return ColumnMapping(source, kind, target, kind)


# ---------------------------------------------------------------------------
# Creation and registry
# ---------------------------------------------------------------------------

class TestCreate:
    def test_one_to_one_id(self, repo: MappingRepository) -> None:
        mapping = repo.create_one_to_one("CUSTOMERS", "clientes", [column("ID", "id")])
        assert mapping.id == "CUSTOMERS_to_clientes"
        assert "CUSTOMERS_to_clientes" in repo
        assert len(repo) == 1

    def test_many_to_one_id(self, repo: MappingRepository) -> None:
        join = JoinCondition("ORDERS", "CUSTOMER_ID", "CUSTOMERS", "ID")
        mapping = repo.create_many_to_one(["ORDERS", "CUSTOMERS"], "pedidos", [join])
        assert mapping.id == "ORDERS_CUSTOMERS_to_pedidos"
        assert mapping.kind == MappingKind.MANY_TO_ONE
        assert mapping.join_conditions == [join]

    def test_one_to_many_ids(self, repo: MappingRepository) -> None:
        created = repo.create_one_to_many("CUSTOMERS", ["clientes", "pedidos"], {"clientes": ["ID"]})
        assert [m.id for m in created] == ["CUSTOMERS_to_clientes_split", "CUSTOMERS_to_pedidos_split"]
        assert created[0].split_rule.columns == ["ID"]
        assert created[1].split_rule.columns == []

    @pytest.mark.parametrize("sources, target, message", [
        (["ORDERS"], "pedidos", "at least 2 source tables"),
        (["ORDERS", "GHOST"], "pedidos", "Source table not found: GHOST"),
        (["ORDERS", "CUSTOMERS"], "nowhere", "Target table not found: nowhere"),
    ])
    def test_many_to_one_errors(self, repo, sources, target, message) -> None:
        with pytest.raises(MappingError, match=message):
            repo.create_many_to_one(sources, target)

    def test_one_to_many_needs_two_targets(self, repo: MappingRepository) -> None:
        with pytest.raises(MappingError, match="at least 2 target tables"):
            repo.create_one_to_many("CUSTOMERS", ["clientes"])

    def test_same_id_replaces(self, repo: MappingRepository) -> None:
        repo.create_one_to_one("CUSTOMERS", "clientes")
        second = repo.create_one_to_one("CUSTOMERS", "clientes", [column("ID", "id")])
        assert repo.all() == [second]


class TestRegistry:
    def test_update(self, repo: MappingRepository) -> None:
        mapping = repo.create_one_to_one("CUSTOMERS", "clientes")
        repo.update(mapping.id, enabled=False, confidence=42.0)
        assert repo.get(mapping.id).enabled is False
        assert repo.get(mapping.id).confidence == 42.0
        assert repo.enabled() == []

    def test_update_unknown_id(self, repo: MappingRepository) -> None:
        with pytest.raises(MappingError, match="Unknown mapping id"):
            repo.update("nope", enabled=False)

    def test_update_unknown_field(self, repo: MappingRepository) -> None:
        mapping = repo.create_one_to_one("CUSTOMERS", "clientes")
        with pytest.raises(MappingError, match="colour"):
            repo.update(mapping.id, colour="red")

    def test_remove(self, repo: MappingRepository) -> None:
        mapping = repo.create_one_to_one("CUSTOMERS", "clientes")
        assert repo.remove(mapping.id) is True
        assert repo.remove(mapping.id) is False
        assert repo.get(mapping.id) is None

    def test_clear(self, repo: MappingRepository) -> None:
        repo.create_one_to_one("CUSTOMERS", "clientes")
        repo.create_one_to_one("ORDERS", "pedidos")
        repo.clear()
        assert len(repo) == 0
        assert repo.all() == []
        assert repo.source_table("CUSTOMERS") is not None

    def test_schema_lookup_by_name(self, repo: MappingRepository) -> None:
        assert repo.target_table("pedidos").column_names == ["id", "cliente"]
        assert repo.source_table("GHOST") is None
        assert [t.name for t in repo.source_tables] == ["CUSTOMERS", "ORDERS"]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class TestValidate:
    def test_valid_mappings(self, repo: MappingRepository) -> None:
        repo.create_one_to_one("CUSTOMERS", "clientes", [column("ID", "id"), column("NAME", "nome", "VARCHAR")])
        repo.create_many_to_one(
            ["ORDERS", "CUSTOMERS"], "pedidos",
            column_mappings=[column("ORDERS.ID", "id"), column("NAME", "cliente", "VARCHAR")],
        )
        assert repo.validate() == []

    def test_missing_columns_reported(self, repo: MappingRepository) -> None:
        repo.create_one_to_one("CUSTOMERS", "clientes", [column("EMAIL", "email", "VARCHAR")])
        assert repo.validate() == [
            "[CUSTOMERS_to_clientes] source column not found: EMAIL",
            "[CUSTOMERS_to_clientes] target column not found: clientes.email",
        ]

    def test_qualified_column_checked_against_owner(self, repo: MappingRepository) -> None:
        repo.create_many_to_one(
            ["ORDERS", "CUSTOMERS"], "pedidos", column_mappings=[column("ORDERS.NAME", "id")]
        )
        assert repo.validate() == ["[ORDERS_CUSTOMERS_to_pedidos] source column not found: ORDERS.NAME"]

    def test_schema_drift_never_raises(self, repo: MappingRepository) -> None:
        repo.add(TableMapping(source_tables=["GONE"], target_table="missing"))
        repo.add(TableMapping(
            source_tables=["CUSTOMERS"], target_table="pedidos", kind=MappingKind.MANY_TO_ONE
        ))
        errors = repo.validate()
        assert "[GONE_to_missing] source table not found: GONE" in errors
        assert "[GONE_to_missing] target table not found: missing" in errors
        assert "[CUSTOMERS_to_pedidos] many-to-one mapping needs at least 2 source tables" in errors


# ---------------------------------------------------------------------------
# Import / export / persistence
# ---------------------------------------------------------------------------

class TestPersistence:
    def test_export_import_preserves_mappings(self, repo: MappingRepository) -> None:
        transformation = FieldTransformation(
            kind=TransformationKind.CONVERT, expression="CAST(NAME AS VARCHAR(60))"
        )
        repo.create_one_to_one(
            "CUSTOMERS", "clientes",
            [ColumnMapping("NAME", "VARCHAR", "nome", "VARCHAR", transformation=transformation)],
            confidence=70.0,
        )
        exported = repo.export_config({"similarityThreshold": 0.7})

        fresh = MappingRepository()
        config = fresh.import_config(json.loads(json.dumps(exported)))

        assert config == {"similarityThreshold": 0.7}
        restored = fresh.get("CUSTOMERS_to_clientes")
        assert restored.confidence == 70.0
        assert restored.column_mappings[0].transformation.expression == "CAST(NAME AS VARCHAR(60))"
        assert "exportedAt" in exported

    def test_export_summarises_schemas(self, repo: MappingRepository) -> None:
        exported = repo.export_config()
        assert exported["sourceSchema"] == [
            {"name": "CUSTOMERS", "columns": 2},
            {"name": "ORDERS", "columns": 2},
        ]
        assert [t["name"] for t in exported["targetSchema"]] == ["clientes", "pedidos"]

    def test_import_replaces_existing(self, repo: MappingRepository) -> None:
        repo.create_one_to_one("CUSTOMERS", "clientes")
        exported = repo.export_config()
        repo.create_one_to_one("ORDERS", "pedidos")

        repo.import_config(exported)
        assert [m.id for m in repo.all()] == ["CUSTOMERS_to_clientes"]

    def test_import_without_mappings_keeps_existing(self, repo: MappingRepository) -> None:
        repo.create_one_to_one("CUSTOMERS", "clientes")
        assert repo.import_config({}) == {}
        assert len(repo) == 1

    def test_save_and_load(self, repo: MappingRepository, tmp_path: Path) -> None:
        repo.create_one_to_one("CUSTOMERS", "clientes", [column("ID", "id")])
        path = repo.save(tmp_path / "nested" / "mappings.json", {"autoMapTables": True})

        assert path.exists()
        assert not path.with_suffix(".tmp").exists()

        fresh = MappingRepository()
        assert fresh.load(path) == {"autoMapTables": True}
        assert [m.id for m in fresh.all()] == ["CUSTOMERS_to_clientes"]

    def test_default_path_from_config(
        self, repo: MappingRepository, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        target = tmp_path / "configured.json"
        patched = dataclasses.replace(
            CONFIG, mapping=dataclasses.replace(CONFIG.mapping, mapping_file=target)
        )
        monkeypatch.setattr("schemabridge.core.mapping_store.CONFIG", patched)
        repo.create_one_to_one("CUSTOMERS", "clientes")

        assert repo.save() == target
        assert target.exists()
        fresh = MappingRepository()
        fresh.load()
        assert len(fresh) == 1

    def test_load_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(MappingError, match="not found"):
            MappingRepository().load(tmp_path / "absent.json")

    def test_load_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(MappingError, match="Invalid JSON"):
            MappingRepository().load(path)
