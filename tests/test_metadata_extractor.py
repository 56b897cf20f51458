import pytest

from sql_script_orderer.core import entities
from sql_script_orderer.core.metadata_extractor import MetadataExtractor
from sql_script_orderer.core.options import ScriptingOptions, STANDALONE
from sql_script_orderer.core.orderer import DependencyOrderer
from sql_script_orderer.core.snapshot import EXPRESSIONS, FOREIGN_KEYS, ROLES
from sql_script_orderer.core.urn import Urn

from conftest import database_child_urn, database_urn, index_urn, schema_object_urn, server_child_urn, table_urn

# Query marker -> rows; first match wins
CATALOG = [
    ("SERVERPROPERTY", [(16, 3)]),
    ("DB_ID()", [(5,)]),
    ("FROM sys.tables t JOIN", [(1, "dbo", "Orders", False), (2, "dbo", "Docs", True)]),
    ("FROM sys.indexes", [
        ("dbo", "Orders", "PK_Orders", 1, "CLUSTERED", True, False, None, False),
        ("dbo", "Docs", "XML_Docs", 2, "XML", False, False, 0, False),
        ("dbo", "Docs", "Odd", 3, "SOMETHING NEW", False, False, None, False),
    ]),
    ("FROM sys.foreign_keys fk", [("dbo", "Orders", "FK_Orders_Docs", 10, False)]),
    ("FROM sys.check_constraints", []),
    ("FROM sys.default_constraints", [("dbo", "Orders", "qty", 11)]),
    ("FROM sys.views v", [(20, "dbo", "V", True)]),
    ("FROM sys.objects o", [(30, "dbo", "P", "P ", False), (31, "dbo", "F", "IF", True)]),
    ("principal_id, name, type FROM sys.database_principals", [(5, "u", "S"), (6, "cu", "C"), (7, "r", "R")]),
    ("FROM sys.assemblies", [(65536, "asm")]),
    ("FROM sys.certificates", []),
    ("FROM sys.asymmetric_keys", []),
    ("FROM sys.triggers", []),
    ("principal_id, name, type FROM sys.server_principals", [(260, "l", "S"), (270, "sr", "R")]),
    ("FROM sys.server_triggers", [(400, "audit_ddl")]),
    ("FROM sys.foreign_key_columns", [(1, 2)]),
    ("FROM sys.assembly_references", []),
    ("owning_principal_id FROM sys.database_principals", [(7, 1)]),
    ("FROM sys.sql_expression_dependencies", [(20, 1)]),
    ("history_table_id", []),
    ("owning_principal_id FROM sys.server_principals", [(270, 271)]),
]


class FakeConnection:
    server = "SRV"
    database = "db"

    def __init__(self):
        self.queries = []

    def execute_query(self, query, database=None):
        self.queries.append(query)
        for marker, rows in CATALOG:
            if marker in query:
                return list(rows)
        raise AssertionError(f"Unexpected query: {query}")


@pytest.fixture
def connection():
    return FakeConnection()


def test_extracts_entities(connection):
    messages = []
    snapshot = MetadataExtractor(connection).extract(progress_callback=messages.append)
    repo = snapshot.repository

    assert snapshot.server.version_major == 16
    assert snapshot.server.engine_type == STANDALONE
    assert repo.resolve(database_urn()).object_id == 5
    assert repo.resolve(table_urn("Docs")).is_filestream_table

    pk = repo.resolve(index_urn(table_urn("Orders"), "PK_Orders"))
    assert pk.index_type == entities.CLUSTERED_INDEX
    assert pk.is_key
    assert repo.resolve(index_urn(table_urn("Docs"), "XML_Docs")).index_type == entities.PRIMARY_XML_INDEX
    assert repo.get(index_urn(table_urn("Docs"), "Odd")) is None

    fk = Urn(f"{table_urn('Orders')}/ForeignKey[@Name='FK_Orders_Docs']")
    assert repo.resolve(table_urn("Orders")).foreign_keys == [fk]
    assert Urn(f"{table_urn('Orders')}/Column[@Name='qty']/Default") in repo

    assert repo.resolve(schema_object_urn("View", "V")).is_schema_bound
    assert repo.resolve(schema_object_urn("StoredProcedure", "P")).object_id == 30
    assert repo.resolve(schema_object_urn("UserDefinedFunction", "F")).function_type == entities.FUNCTION_INLINE

    assert repo.resolve(database_child_urn("User", "cu")).user_type == entities.CERTIFICATE
    assert database_child_urn("Role", "r") in repo
    assert database_child_urn("SqlAssembly", "asm") in repo
    assert server_child_urn("Login", "l") in repo
    assert server_child_urn("Role", "sr") in repo
    assert server_child_urn("DdlTrigger", "audit_ddl") in repo

    assert messages[0] == "Extracting database..."
    assert messages[-1] == "Extracting dependencies..."


def test_extracts_dependency_pairs(connection):
    catalog = MetadataExtractor(connection).extract().catalog

    assert catalog.pairs("db", FOREIGN_KEYS) == [(1, 2)]
    assert catalog.pairs("db", EXPRESSIONS) == [(20, 1)]
    assert catalog.pairs("db", ROLES) == [(7, 1)]
    assert catalog.pairs(None, ROLES) == [(270, 271)]


def test_server_scope_skipped(connection):
    snapshot = MetadataExtractor(connection).extract(include_server=False)

    assert server_child_urn("Login", "l") not in snapshot.repository
    assert not any("sys.server_principals" in q for q in connection.queries)


def test_schema_filter(connection):
    MetadataExtractor(connection).extract(schema_filter="dbo")

    table_query = next(q for q in connection.queries if "FROM sys.tables t JOIN" in q)
    assert "s.name = 'dbo'" in table_query

    with pytest.raises(ValueError):
        MetadataExtractor(connection).extract(schema_filter="dbo'; drop table x--")


def test_extracted_snapshot_orders_table_data(connection):
    snapshot = MetadataExtractor(connection).extract()
    orderer = DependencyOrderer(
        snapshot.repository,
        catalog=snapshot.catalog,
        options=ScriptingOptions(include_ddl=False, include_data=True),
        server=snapshot.server,
    )

    result = orderer.order([table_urn("Orders"), table_urn("Docs")])

    assert result == [table_urn("Docs").with_phase("Data"), table_urn("Orders").with_phase("Data")]
