"""End-to-end ordering scenarios against in-memory metadata and snapshot catalogs."""
from unittest.mock import Mock

import pytest

from sql_script_orderer.core import entities
from sql_script_orderer.core import kinds as k
from sql_script_orderer.core.exceptions import ConfigurationError, OrderingCycleError
from sql_script_orderer.core.options import ScriptBehavior, ScriptingOptions, ServerInfo
from sql_script_orderer.core.orderer import DependencyOrderer
from sql_script_orderer.core.snapshot import EXPRESSIONS, FOREIGN_KEYS, ROLES, TEMPORAL, SnapshotCatalog
from sql_script_orderer.core.urn import Urn

from conftest import (
    database_child_urn,
    database_urn,
    index_urn,
    schema_object_urn,
    server_child_urn,
    table_child_urn,
    table_urn,
)

SQL2014 = ServerInfo(version_major=12)
SQL2022 = ServerInfo(version_major=16)


def orderer(builder, catalog=None, server=SQL2022, **options):
    return DependencyOrderer(builder.repository, catalog=catalog, options=ScriptingOptions(**options), server=server)


# -- single identifier -----------------------------------------------------

def test_single_table_with_data(builder):
    t = builder.add(table_urn("T"))

    assert orderer(builder, include_data=True).order([t]) == [t, t.with_phase("Data")]


def test_single_table_data_only(builder):
    t = builder.add(table_urn("T"))

    assert orderer(builder, include_ddl=False, include_data=True).order([t]) == [t.with_phase("Data")]


def test_single_creating_table_has_no_data(builder):
    t = builder.add(table_urn("T"), state=entities.CREATING)

    assert orderer(builder, include_data=True).order([t]) == [t]


def test_single_login_gets_associations(builder):
    login = builder.add(server_child_urn("Login", "l"))
    role = builder.add(server_child_urn("Role", "r"), state=entities.CREATING)

    assert orderer(builder).order([login]) == [login, login.with_phase("Associations")]
    assert orderer(builder).order([role]) == [role]


def test_single_database_gets_readonly_phase(builder):
    db = builder.add(database_urn())

    assert orderer(builder).order([db]) == [db, db.with_phase("databasereadonly")]


def test_single_other_object(builder):
    view = builder.add(schema_object_urn("View", "V"))

    assert orderer(builder).order([view]) == [view]
    assert orderer(builder).order([]) == []


def test_data_only_ignores_non_tables(builder):
    view = builder.add(schema_object_urn("View", "V"))
    login = builder.add(server_child_urn("Login", "l"))

    assert orderer(builder, include_ddl=False, include_data=True).order([view, login]) == []


# -- catalog driven ordering -----------------------------------------------

@pytest.mark.parametrize("server", [SQL2022, SQL2014, ServerInfo(version_major=8)])
def test_referenced_table_created_first(builder, server):
    t1 = builder.add(table_urn("T1"), object_id=1)
    t2 = builder.add(table_urn("T2"), object_id=2)
    catalog = SnapshotCatalog({"db": {FOREIGN_KEYS: [[2, 1]]}})

    assert orderer(builder, catalog, server=server).order([t2, t1]) == [t1, t2]


def test_referenced_table_first_alongside_schema_bound_procedure(builder):
    proc = builder.add(schema_object_urn("StoredProcedure", "P"), object_id=10, is_schema_bound=True)
    t1 = builder.add(table_urn("T1"), object_id=1)
    t2 = builder.add(table_urn("T2"), object_id=2)
    catalog = SnapshotCatalog({"db": {FOREIGN_KEYS: [[2, 1]], EXPRESSIONS: [[10, 2]]}})

    assert orderer(builder, catalog, server=SQL2014).order([proc, t2, t1]) == [t1, t2, proc]


def test_cyclic_foreign_keys_raise(builder):
    t1 = builder.add(table_urn("T1"), object_id=1)
    t2 = builder.add(table_urn("T2"), object_id=2)
    catalog = SnapshotCatalog({"db": {FOREIGN_KEYS: [[1, 2], [2, 1]]}})

    with pytest.raises(OrderingCycleError):
        orderer(builder, catalog, server=SQL2014).order([t1, t2])


def test_drop_attaches_foreign_keys(builder):
    fk = builder.add(table_child_urn(table_urn("T2"), "ForeignKey", "FK_T2_T1"))
    t1 = builder.add(table_urn("T1"), object_id=1)
    t2 = builder.add(table_urn("T2"), object_id=2, foreign_keys=[fk])
    catalog = SnapshotCatalog({"db": {FOREIGN_KEYS: [[2, 1]]}})

    plan = orderer(builder, catalog, behavior=ScriptBehavior.DROP).plan([t2, t1])

    assert plan.urns == [t1, t2, fk]
    assert plan.embedded == {}


def test_data_only_orders_by_foreign_keys(builder):
    t1 = builder.add(table_urn("T1"), object_id=1)
    t2 = builder.add(table_urn("T2"), object_id=2)
    t3 = builder.add(table_urn("T3"), object_id=3)
    new = builder.add(table_urn("New"), object_id=None, state=entities.CREATING)
    catalog = SnapshotCatalog({"db": {FOREIGN_KEYS: [[2, 1], [3, 2]]}})

    result = orderer(builder, catalog, include_ddl=False, include_data=True).order([t3, new, t1, t2])

    assert result == [t1.with_phase("Data"), t2.with_phase("Data"), t3.with_phase("Data")]


def test_schema_bound_routines(builder):
    scalar = builder.add(schema_object_urn("UserDefinedFunction", "F1"), function_type=entities.FUNCTION_SCALAR)
    inline = builder.add(schema_object_urn("UserDefinedFunction", "F2"), object_id=20,
                         function_type=entities.FUNCTION_INLINE)
    view = builder.add(schema_object_urn("View", "V"), object_id=30, is_schema_bound=True)
    new_proc = builder.add(schema_object_urn("StoredProcedure", "P1"), state=entities.CREATING)
    proc = builder.add(schema_object_urn("StoredProcedure", "P2"))
    table = builder.add(table_urn("T"))
    catalog = SnapshotCatalog({"db": {EXPRESSIONS: [[30, 20]]}})

    result = orderer(builder, catalog, server=SQL2014).order([proc, view, new_proc, table, inline, scalar])

    assert result == [scalar, table, inline, view, new_proc, proc]


def test_schema_bound_scalar_function_pulls_tables_in(builder):
    func = builder.add(schema_object_urn("UserDefinedFunction", "F"), object_id=10, is_schema_bound=True,
                       function_type=entities.FUNCTION_SCALAR)
    table = builder.add(table_urn("T"), object_id=11)
    new_table = builder.add(table_urn("N"), state=entities.CREATING)
    # The table has a computed column calling the function
    catalog = SnapshotCatalog({"db": {EXPRESSIONS: [[11, 10]]}})

    result = orderer(builder, catalog, server=SQL2014).order([table, new_table, func])

    assert result == [func, table, new_table]


def test_temporal_history_table_follows_current_table(builder):
    current = builder.add(table_urn("Orders"), object_id=1)
    history = builder.add(table_urn("OrdersHistory"), object_id=2)
    catalog = SnapshotCatalog({"db": {TEMPORAL: [[2, 1]]}})

    assert orderer(builder, catalog).order([history, current]) == [current, history]


def test_assemblies_ordered_with_creating_last(builder):
    a = builder.add(database_child_urn("SqlAssembly", "A"), object_id=65536)
    b = builder.add(database_child_urn("SqlAssembly", "B"), object_id=65537)
    c = builder.add(database_child_urn("SqlAssembly", "C"), state=entities.CREATING)
    catalog = Mock()
    catalog.run_query.return_value = [(65536, 65537)]

    assert orderer(builder, catalog).order([c, a, b]) == [b, a, c]


def test_cyclic_role_ownership_raises(builder):
    roles = [builder.add(database_child_urn("Role", f"r{i}"), object_id=i) for i in (1, 2, 3)]
    catalog = SnapshotCatalog({"db": {ROLES: [[1, 2], [2, 3], [3, 1]]}})

    with pytest.raises(OrderingCycleError, match="Ordering cycle detected"):
        orderer(builder, catalog).order(roles)


def test_role_owned_by_role_comes_after_owner(builder):
    owned = builder.add(server_child_urn("Role", "owned"), object_id=300)
    owner = builder.add(server_child_urn("Role", "owner"), object_id=301)
    catalog = SnapshotCatalog({"": {ROLES: [[300, 301]]}})

    result = orderer(builder, catalog).order([owned, owner])

    assert result == [
        owner.with_phase("Object"),
        owned.with_phase("Object"),
        owner.with_phase("Associations"),
        owned.with_phase("Associations"),
    ]


def test_catalog_failure_aborts_ordering(builder):
    t1 = builder.add(table_urn("T1"))
    t2 = builder.add(table_urn("T2"))
    catalog = Mock()
    catalog.run_batched_query.side_effect = ConnectionError("network down")

    with pytest.raises(ConnectionError):
        orderer(builder, catalog).order([t1, t2])


# -- phases ----------------------------------------------------------------

def test_clustered_index_placed_after_its_table(builder):
    user = builder.add(database_child_urn("User", "u"))
    table = builder.add(table_urn("T"))
    clustered = builder.add(index_urn(table, "CX"), index_type=entities.CLUSTERED_INDEX)
    nonclustered = builder.add(index_urn(table, "NX"), index_type=entities.NONCLUSTERED_INDEX)

    result = orderer(builder).order([nonclustered, clustered, table, user])

    assert result == [user, table, clustered, nonclustered]


def test_clustered_index_without_table_goes_last(builder):
    user = builder.add(database_child_urn("User", "u"))
    clustered = builder.add(index_urn(table_urn("T"), "CX"), index_type=entities.CLUSTERED_INDEX)
    other = builder.add(index_urn(table_urn("O"), "NX"), index_type=entities.NONCLUSTERED_INDEX)

    assert orderer(builder).order([clustered, other, user]) == [user, other, clustered]


def test_primary_key_folded_into_table(builder):
    table = builder.add(table_urn("T"))
    pk = builder.add(index_urn(table, "PK_T"), index_type=entities.CLUSTERED_INDEX,
                     index_key_type=entities.KEY_PRIMARY)
    view = builder.add(schema_object_urn("View", "V"))

    plan = orderer(builder, server=SQL2014).plan([pk, table, view])

    assert plan.urns == [table, view]
    assert plan.embedded == {table: [pk]}


def test_tables_with_data(builder):
    t1 = builder.add(table_urn("T1"), object_id=1)
    t2 = builder.add(table_urn("T2"), object_id=2)
    new = builder.add(table_urn("T3"), state=entities.CREATING)
    catalog = SnapshotCatalog({"db": {FOREIGN_KEYS: [[1, 2]]}})

    result = orderer(builder, catalog, server=SQL2014, include_data=True).order([t1, new, t2])

    assert result == [t2, t1, new, t2.with_phase("Data"), t1.with_phase("Data")]


def test_security_phases_in_fixed_order(builder):
    db = builder.add(database_urn())
    login = builder.add(server_child_urn("Login", "l"))
    server_role = builder.add(server_child_urn("Role", "sr"))
    user = builder.add(database_child_urn("User", "u"))
    db_role = builder.add(database_child_urn("Role", "dr"))

    result = orderer(
        builder, include_associations=True, include_owner=True, include_permissions=True
    ).order([db_role, user, server_role, login, db])

    assert result == [
        db.with_phase("Object"),
        login.with_phase("Object"),
        server_role.with_phase("Object"),
        login.with_phase("Associations"),
        server_role.with_phase("Associations"),
        server_role.with_phase("Ownership"),
        db.with_phase("Ownership"),
        login.with_phase("Permission"),
        server_role.with_phase("Permission"),
        user.with_phase("Object"),
        db_role.with_phase("Object"),
        user.with_phase("Associations"),
        db_role.with_phase("Associations"),
        db_role.with_phase("Ownership"),
        db.with_phase("Permission"),
        user.with_phase("Permission"),
        db_role.with_phase("Permission"),
        db.with_phase("databasereadonly"),
    ]


def test_drop_keeps_plain_security_objects(builder):
    login = builder.add(server_child_urn("Login", "l"))
    user = builder.add(database_child_urn("User", "u"))

    result = orderer(builder, behavior=ScriptBehavior.DROP, include_permissions=True).order([user, login])

    assert result == [login, user]


def test_certificate_login_pulls_master_certificates_forward(builder):
    cert_login = builder.add(server_child_urn("Login", "cl"), login_type=entities.CERTIFICATE)
    login = builder.add(server_child_urn("Login", "l"))
    master_cert = builder.add(database_child_urn("Certificate", "mc", database="master"))
    db_cert = builder.add(database_child_urn("Certificate", "dc"))

    result = orderer(builder).order([db_cert, master_cert, login, cert_login])

    assert result == [
        login.with_phase("Object"),
        master_cert.with_phase("Object"),
        cert_login.with_phase("Object"),
        login.with_phase("Associations"),
        cert_login.with_phase("Associations"),
        db_cert,
    ]


def test_ddl_triggers_enabled_after_all_are_created(builder):
    tr1 = builder.add(database_child_urn("DdlTrigger", "tr1"))
    tr2 = builder.add(database_child_urn("DdlTrigger", "tr2"))

    result = orderer(builder).order([tr1, tr2])

    assert result == [
        tr1.with_phase("Object"),
        tr2.with_phase("Object"),
        tr1.with_phase(k.DATABASE_DDL_TRIGGER_ENABLE),
        tr2.with_phase(k.DATABASE_DDL_TRIGGER_ENABLE),
    ]


def test_unresolved_entities_come_first(builder):
    table = builder.add(table_urn("T"))
    unresolved = Urn("Server[@Name='SRV']/UnresolvedEntity[@Name='x']")

    result = orderer(builder).order([table, unresolved])

    assert result == [unresolved.with_phase("UnresolvedEntity"), table]


def test_design_mode_embeds_constraints(builder):
    table = builder.add(table_urn("T"))
    fk = table_child_urn(table, "ForeignKey", "FK")
    check = table_child_urn(table, "Check", "CK")
    default = Urn(f"{table_child_urn(table, 'Column', 'c')}/Default")
    server = ServerInfo(version_major=16, is_design_mode=True)

    plan = orderer(builder, server=server).plan([default, check, fk, table])

    assert plan.urns == [table]
    assert plan.embedded == {table: [fk, check, default]}


def test_constraints_stay_separate_outside_design_mode(builder):
    table = builder.add(table_urn("T"))
    fk = table_child_urn(table, "ForeignKey", "FK")
    check = table_child_urn(table, "Check", "CK")

    assert orderer(builder).order([check, fk, table]) == [table, fk, check]


# -- contract --------------------------------------------------------------

def test_ordering_is_repeatable(builder):
    t1 = builder.add(table_urn("T1"), object_id=1)
    t2 = builder.add(table_urn("T2"), object_id=2)
    v = builder.add(schema_object_urn("View", "V"), object_id=3)
    catalog = SnapshotCatalog({"db": {EXPRESSIONS: [[3, 1], [3, 2]]}})
    engine = orderer(builder, catalog, include_data=True)

    first = engine.order([v, t2, t1])
    assert engine.order([v, t2, t1]) == first
    assert first.index(t1) < first.index(v)
    assert first.index(t2) < first.index(v)


def test_repeated_identifiers_ordered_once(builder):
    t = builder.add(table_urn("T"))
    user = builder.add(database_child_urn("User", "u"))

    assert orderer(builder, server=SQL2014).order([t, t, user]) == [user, t]


def test_repeated_single_identifier_takes_single_path(builder):
    t = builder.add(table_urn("T"))

    assert orderer(builder, include_data=True).order([t, t]) == [t, t.with_phase("Data")]
    assert orderer(builder, include_ddl=False, include_data=True).order([t, t]) == [t.with_phase("Data")]


def test_unknown_kind_aborts(builder):
    with pytest.raises(ConfigurationError):
        orderer(builder).order([table_urn("T"), Urn("Server[@Name='SRV']/Gadget[@Name='g']")])


def test_contradictory_options_rejected(builder):
    with pytest.raises(ConfigurationError):
        orderer(builder, include_ddl=False, include_data=False)
