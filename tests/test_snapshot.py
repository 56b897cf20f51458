import json

import pytest

from sql_script_orderer.core import entities
from sql_script_orderer.core.catalog_queries import (
    ASSEMBLY_REFERENCES,
    DATABASE_ROLE_OWNERS,
    FOREIGN_KEY_COLUMNS,
    SYSREFERENCES,
    DependencyQuery,
    schema_bound_query,
)
from sql_script_orderer.core.entities import EntityInfo, EntityRepository
from sql_script_orderer.core.options import ServerInfo
from sql_script_orderer.core.snapshot import (
    ASSEMBLIES,
    EXPRESSIONS,
    FOREIGN_KEYS,
    ROLES,
    TEMPORAL,
    EntitySnapshot,
    SnapshotCatalog,
    load_snapshot,
    query_families,
    save_snapshot,
)

from conftest import index_urn, table_urn


def test_query_families_by_marker():
    assert query_families(ASSEMBLY_REFERENCES) == [ASSEMBLIES]
    assert query_families(DATABASE_ROLE_OWNERS) == [ROLES]
    assert query_families(FOREIGN_KEY_COLUMNS) == [FOREIGN_KEYS]
    assert query_families(SYSREFERENCES) == [FOREIGN_KEYS]
    assert query_families(schema_bound_query(ServerInfo(version_major=16)).template) == [EXPRESSIONS, TEMPORAL]
    assert query_families("select 1") == []


def test_in_list_query_filters_to_ids():
    catalog = SnapshotCatalog({"db": {ASSEMBLIES: [[1, 2], [2, 3], [4, 4]]}})

    assert catalog.run_query(ASSEMBLY_REFERENCES, [1, 2, 4], database="db") == [(1, 2)]
    assert catalog.run_query(ASSEMBLY_REFERENCES, [1, 2], database="other") == []


def test_batched_query_reads_ids_from_inserts():
    catalog = SnapshotCatalog({"db": {FOREIGN_KEYS: [[10, 11], [11, 12], [12, 99]]}})
    statements = DependencyQuery("fk", FOREIGN_KEY_COLUMNS).statements([10, 11, 12], batch_size=2)

    assert catalog.run_batched_query(statements, database="db") == [(10, 11), (11, 12)]


def test_batched_query_without_dependency_statement():
    catalog = SnapshotCatalog()

    with pytest.raises(ValueError):
        catalog.run_batched_query(["create table #tempordering(ID int)"], database="db")


def test_unknown_family_rejected():
    with pytest.raises(ValueError):
        SnapshotCatalog({"db": {"synonyms": [[1, 2]]}})


def test_server_scope_pairs():
    catalog = SnapshotCatalog()
    catalog.add_pairs(None, ROLES, [(5, 6)])

    assert catalog.pairs("", ROLES) == [(5, 6)]
    assert catalog.to_dict() == {"": {ROLES: [[5, 6]]}}


def test_snapshot_round_trip(tmp_path):
    table = table_urn("T")
    pk = index_urn(table, "PK_T")
    repository = EntityRepository([
        EntityInfo(table, object_id=1, is_filestream_table=True),
        EntityInfo(pk, object_id=2, index_type=entities.CLUSTERED_INDEX, index_key_type=entities.KEY_PRIMARY),
        EntityInfo(table_urn("New"), state=entities.CREATING),
    ])
    snapshot = EntitySnapshot(
        server=ServerInfo(version_major=13, is_design_mode=True),
        repository=repository,
        catalog=SnapshotCatalog({"db": {FOREIGN_KEYS: [[1, 3]]}}),
    )
    path = tmp_path / "snap" / "db.json"

    snapshot.save(path)
    loaded = EntitySnapshot.load(path)

    assert loaded.server == snapshot.server
    assert len(loaded.repository) == 3
    assert loaded.repository.resolve(pk).is_key
    assert loaded.repository.resolve(table).is_filestream_table
    assert loaded.repository.resolve(table_urn("New")).is_creating
    assert loaded.catalog.pairs("db", FOREIGN_KEYS) == [(1, 3)]


def test_load_plain_metadata_object(tmp_path):
    path = tmp_path / "plain.json"
    path.write_text(json.dumps({"entities": [{"urn": str(table_urn("T")), "object_id": 7}]}), encoding="utf-8")

    snapshot = EntitySnapshot.load(path)

    assert snapshot.server == ServerInfo()
    assert snapshot.repository.resolve(table_urn("T")).object_id == 7


def test_load_rejects_newer_version(tmp_path):
    path = tmp_path / "future.json"
    path.write_text(json.dumps({"version": 99, "metadata": {}}), encoding="utf-8")

    with pytest.raises(ValueError, match="newer"):
        load_snapshot(path)


def test_load_missing_file(tmp_path):
    with pytest.raises(ValueError):
        load_snapshot(tmp_path / "missing.json")


def test_save_wraps_payload(tmp_path):
    path = tmp_path / "raw.json"
    save_snapshot(path, {"entities": []})

    assert json.loads(path.read_text(encoding="utf-8")) == {"version": 1, "metadata": {"entities": []}}
