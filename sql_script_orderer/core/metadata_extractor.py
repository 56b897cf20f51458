from __future__ import annotations

import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from sql_script_orderer.core import entities
from sql_script_orderer.core.database import DatabaseConnection
from sql_script_orderer.core.entities import EntityInfo, EntityRepository
from sql_script_orderer.core.options import SQL_AZURE_DATABASE, STANDALONE, ServerInfo
from sql_script_orderer.core.snapshot import (
    ASSEMBLIES,
    EXPRESSIONS,
    FOREIGN_KEYS,
    ROLES,
    SERVER_SCOPE,
    TEMPORAL,
    EntitySnapshot,
    SnapshotCatalog,
)
from sql_script_orderer.core.urn import Urn
from sql_script_orderer.utils.logger import get_logger

logger = get_logger(__name__)

# sys.indexes.type_desc -> index sub-kind
INDEX_TYPES: Dict[str, str] = {
    "HEAP": entities.HEAP_INDEX,
    "CLUSTERED": entities.CLUSTERED_INDEX,
    "NONCLUSTERED": entities.NONCLUSTERED_INDEX,
    "SPATIAL": entities.SPATIAL_INDEX,
    "CLUSTERED COLUMNSTORE": entities.CLUSTERED_COLUMNSTORE_INDEX,
    "NONCLUSTERED COLUMNSTORE": entities.NONCLUSTERED_COLUMNSTORE_INDEX,
    "NONCLUSTERED HASH": entities.NONCLUSTERED_HASH_INDEX,
    "VECTOR": entities.VECTOR_INDEX,
    "JSON": entities.JSON_INDEX,
}

# sys.xml_indexes.xml_index_type -> index sub-kind
XML_INDEX_TYPES: Dict[int, str] = {
    0: entities.PRIMARY_XML_INDEX,
    1: entities.SECONDARY_XML_INDEX,
    2: entities.SELECTIVE_XML_INDEX,
    3: entities.SECONDARY_SELECTIVE_XML_INDEX,
}

# sys.objects.type -> function type
FUNCTION_TYPES: Dict[str, str] = {
    "FN": entities.FUNCTION_SCALAR,
    "FS": entities.FUNCTION_SCALAR,
    "IF": entities.FUNCTION_INLINE,
    "TF": entities.FUNCTION_TABLE,
    "FT": entities.FUNCTION_TABLE,
}

# sys.*_principals.type for principals mapped to a certificate or asymmetric key
PRINCIPAL_TYPES: Dict[str, str] = {
    "C": entities.CERTIFICATE,
    "K": entities.ASYMMETRIC_KEY,
}

# SERVERPROPERTY('EngineEdition')
AZURE_SQL_DATABASE_EDITION = 5
SQL_DW_EDITION = 6


def child_urn(parent: Urn, kind: str, attributes: Optional[Dict[str, str]]) -> Urn:
    segments: List[Tuple[str, Optional[Dict[str, str]]]] = [(t, dict(a)) for t, a in parent.segments]
    segments.append((kind, attributes))
    return Urn.from_segments(segments)


class MetadataExtractor:
    """Captures the entity metadata and dependency pairs the orderer needs from one database."""

    def __init__(self, connection: DatabaseConnection, server_name: Optional[str] = None) -> None:
        self.connection = connection
        self.server_name = server_name or connection.server
        self.database = connection.database

    def extract(
        self,
        progress_callback: Optional[Callable[[str], None]] = None,
        schema_filter: Optional[str] = None,
        include_server: bool = True,
    ) -> EntitySnapshot:
        """Extract a snapshot with optional progress updates and schema filtering."""
        if schema_filter and not re.match(r'^[a-zA-Z0-9_]+$', schema_filter):
            raise ValueError(f"Invalid schema filter: {schema_filter}. Only alphanumeric characters and underscores allowed.")
        logger.info(f"Starting snapshot extraction of {self.server_name}/{self.database} with schema_filter={schema_filter}")

        snapshot = EntitySnapshot(server=self._extract_server_info())
        repository = snapshot.repository
        catalog = snapshot.catalog

        steps: List[Tuple[str, Callable[[EntityRepository, Optional[str]], None]]] = [
            ("Extracting database...", lambda r, s: self._extract_database(r)),
            ("Extracting tables...", self._extract_tables),
            ("Extracting indexes...", self._extract_indexes),
            ("Extracting constraints...", self._extract_constraints),
            ("Extracting views...", self._extract_views),
            ("Extracting routines...", self._extract_routines),
            ("Extracting users and roles...", lambda r, s: self._extract_database_principals(r)),
            ("Extracting assemblies, certificates and keys...", lambda r, s: self._extract_crypto(r)),
            ("Extracting DDL triggers...", lambda r, s: self._extract_ddl_triggers(r)),
        ]
        if include_server:
            steps.append(("Extracting logins and server roles...", lambda r, s: self._extract_server_principals(r)))
            steps.append(("Extracting server DDL triggers...", lambda r, s: self._extract_server_ddl_triggers(r)))

        for message, step in steps:
            if progress_callback:
                progress_callback(message)
            step(repository, schema_filter)

        if progress_callback:
            progress_callback("Extracting dependencies...")
        self._extract_dependencies(catalog, snapshot.server, include_server)

        logger.info(f"Snapshot extraction complete: {len(repository)} entities")
        return snapshot

    # -- urns --------------------------------------------------------------

    def _server_urn(self) -> Urn:
        return Urn.from_segments([("Server", {"Name": self.server_name})])

    def _database_urn(self) -> Urn:
        return Urn.from_segments([("Server", {"Name": self.server_name}), ("Database", {"Name": self.database})])

    def _object_urn(self, kind: str, name: str, schema: Optional[str] = None) -> Urn:
        attributes = {"Name": name}
        if schema is not None:
            attributes["Schema"] = schema
        return child_urn(self._database_urn(), kind, attributes)

    def _child_urn(self, parent: Urn, kind: str, name: str) -> Urn:
        return child_urn(parent, kind, {"Name": name})

    # -- server ------------------------------------------------------------

    def _extract_server_info(self) -> ServerInfo:
        rows = self.connection.execute_query(
            "SELECT CAST(PARSENAME(CAST(SERVERPROPERTY('ProductVersion') AS NVARCHAR(128)), 4) AS INT), "
            "CAST(SERVERPROPERTY('EngineEdition') AS INT)"
        )
        version, edition = rows[0] if rows else (None, None)
        edition = int(edition or 0)
        info = ServerInfo(
            version_major=int(version or 16),
            engine_type=SQL_AZURE_DATABASE if edition in (AZURE_SQL_DATABASE_EDITION, SQL_DW_EDITION) else STANDALONE,
            is_sql_dw=edition == SQL_DW_EDITION,
        )
        logger.debug(f"Server info: {info}")
        return info

    def _extract_server_principals(self, repository: EntityRepository) -> None:
        server = self._server_urn()
        q = (
            "SELECT principal_id, name, type FROM sys.server_principals "
            "WHERE type IN ('S', 'U', 'G', 'C', 'K', 'E', 'X', 'R') "
            "AND name NOT LIKE '##%' AND principal_id > 1 AND is_fixed_role = 0"
        )
        for principal_id, name, ptype in self.connection.execute_query(q):
            if ptype == "R":
                urn = self._child_urn(server, "Role", name)
                repository.add(EntityInfo(urn, object_id=int(principal_id)))
            else:
                urn = self._child_urn(server, "Login", name)
                repository.add(EntityInfo(urn, object_id=int(principal_id), login_type=PRINCIPAL_TYPES.get(ptype)))

    # -- database ----------------------------------------------------------

    def _extract_database(self, repository: EntityRepository) -> None:
        rows = self.connection.execute_query("SELECT DB_ID()")
        repository.add(EntityInfo(self._database_urn(), object_id=int(rows[0][0]) if rows else None))

    def _extract_tables(self, repository: EntityRepository, schema_filter: Optional[str] = None) -> None:
        schema_where = f" AND s.name = '{schema_filter}'" if schema_filter else ""
        q = (
            "SELECT t.object_id, s.name, t.name, "
            "CAST(CASE WHEN t.filestream_data_space_id IS NULL THEN 0 ELSE 1 END AS BIT) "
            "FROM sys.tables t JOIN sys.schemas s ON t.schema_id = s.schema_id "
            f"WHERE t.is_ms_shipped = 0{schema_where}"
        )
        for object_id, schema, name, is_filestream in self.connection.execute_query(q):
            repository.add(EntityInfo(
                self._object_urn("Table", name, schema),
                object_id=int(object_id),
                is_filestream_table=bool(is_filestream),
            ))

    def _extract_indexes(self, repository: EntityRepository, schema_filter: Optional[str] = None) -> None:
        schema_where = f" AND s.name = '{schema_filter}'" if schema_filter else ""
        q = (
            "SELECT s.name, t.name, i.name, i.index_id, i.type_desc, i.is_primary_key, i.is_unique_constraint, "
            "xi.xml_index_type, t.is_memory_optimized "
            "FROM sys.indexes i "
            "JOIN sys.tables t ON i.object_id = t.object_id "
            "JOIN sys.schemas s ON t.schema_id = s.schema_id "
            "LEFT JOIN sys.xml_indexes xi ON i.object_id = xi.object_id AND i.index_id = xi.index_id "
            f"WHERE t.is_ms_shipped = 0 AND i.name IS NOT NULL{schema_where}"
        )
        for schema, table, name, index_id, type_desc, is_pk, is_unique, xml_type, is_memory in self.connection.execute_query(q):
            if xml_type is not None:
                index_type = XML_INDEX_TYPES.get(int(xml_type))
            else:
                index_type = INDEX_TYPES.get(str(type_desc).upper())
            if index_type is None:
                logger.warning(f"Skipping index {schema}.{table}.{name} of unsupported type {type_desc}")
                continue
            key_type = entities.KEY_PRIMARY if is_pk else entities.KEY_UNIQUE if is_unique else entities.KEY_NONE
            repository.add(EntityInfo(
                self._child_urn(self._object_urn("Table", table, schema), "Index", name),
                object_id=int(index_id),
                index_type=index_type,
                index_key_type=key_type,
                is_memory_optimized=bool(is_memory),
            ))

    def _extract_constraints(self, repository: EntityRepository, schema_filter: Optional[str] = None) -> None:
        schema_where = f" AND s.name = '{schema_filter}'" if schema_filter else ""
        fk_q = (
            "SELECT s.name, pt.name, fk.name, fk.object_id, "
            "CAST(CASE WHEN pt.is_filetable = 1 AND fk.is_system_named = 1 THEN 1 ELSE 0 END AS BIT) "
            "FROM sys.foreign_keys fk "
            "JOIN sys.tables pt ON fk.parent_object_id = pt.object_id "
            "JOIN sys.schemas s ON pt.schema_id = s.schema_id "
            f"WHERE pt.is_ms_shipped = 0{schema_where}"
        )
        for schema, table, name, object_id, file_table_defined in self.connection.execute_query(fk_q):
            table_urn = self._object_urn("Table", table, schema)
            fk_urn = self._child_urn(table_urn, "ForeignKey", name)
            repository.add(EntityInfo(fk_urn, object_id=int(object_id), is_file_table_defined=bool(file_table_defined)))
            table_info = repository.get(table_urn)
            if table_info is not None:
                table_info.foreign_keys.append(fk_urn)

        check_q = (
            "SELECT s.name, t.name, cc.name, cc.object_id FROM sys.check_constraints cc "
            "JOIN sys.tables t ON cc.parent_object_id = t.object_id "
            "JOIN sys.schemas s ON t.schema_id = s.schema_id "
            f"WHERE t.is_ms_shipped = 0{schema_where}"
        )
        for schema, table, name, object_id in self.connection.execute_query(check_q):
            urn = self._child_urn(self._object_urn("Table", table, schema), "Check", name)
            repository.add(EntityInfo(urn, object_id=int(object_id)))

        default_q = (
            "SELECT s.name, t.name, c.name, dc.object_id FROM sys.default_constraints dc "
            "JOIN sys.tables t ON dc.parent_object_id = t.object_id "
            "JOIN sys.schemas s ON t.schema_id = s.schema_id "
            "JOIN sys.columns c ON dc.parent_object_id = c.object_id AND dc.parent_column_id = c.column_id "
            f"WHERE t.is_ms_shipped = 0{schema_where}"
        )
        for schema, table, column, object_id in self.connection.execute_query(default_q):
            column_urn = self._child_urn(self._object_urn("Table", table, schema), "Column", column)
            repository.add(EntityInfo(child_urn(column_urn, "Default", None), object_id=int(object_id)))

    def _extract_views(self, repository: EntityRepository, schema_filter: Optional[str] = None) -> None:
        schema_where = f" AND s.name = '{schema_filter}'" if schema_filter else ""
        q = (
            "SELECT v.object_id, s.name, v.name, ISNULL(m.is_schema_bound, 0) FROM sys.views v "
            "JOIN sys.schemas s ON v.schema_id = s.schema_id "
            "LEFT JOIN sys.sql_modules m ON v.object_id = m.object_id "
            f"WHERE v.is_ms_shipped = 0{schema_where}"
        )
        for object_id, schema, name, is_schema_bound in self.connection.execute_query(q):
            repository.add(EntityInfo(
                self._object_urn("View", name, schema),
                object_id=int(object_id),
                is_schema_bound=bool(is_schema_bound),
            ))

    def _extract_routines(self, repository: EntityRepository, schema_filter: Optional[str] = None) -> None:
        schema_where = f" AND s.name = '{schema_filter}'" if schema_filter else ""
        q = (
            "SELECT o.object_id, s.name, o.name, o.type, ISNULL(m.is_schema_bound, 0) FROM sys.objects o "
            "JOIN sys.schemas s ON o.schema_id = s.schema_id "
            "LEFT JOIN sys.sql_modules m ON o.object_id = m.object_id "
            f"WHERE o.type IN ('P', 'PC', 'FN', 'FS', 'IF', 'TF', 'FT') AND o.is_ms_shipped = 0{schema_where}"
        )
        for object_id, schema, name, otype, is_schema_bound in self.connection.execute_query(q):
            otype = str(otype).strip()
            if otype in ("P", "PC"):
                urn = self._object_urn("StoredProcedure", name, schema)
                repository.add(EntityInfo(urn, object_id=int(object_id), is_schema_bound=bool(is_schema_bound)))
            else:
                urn = self._object_urn("UserDefinedFunction", name, schema)
                repository.add(EntityInfo(
                    urn,
                    object_id=int(object_id),
                    is_schema_bound=bool(is_schema_bound),
                    function_type=FUNCTION_TYPES.get(otype),
                ))

    def _extract_database_principals(self, repository: EntityRepository) -> None:
        database = self._database_urn()
        q = (
            "SELECT principal_id, name, type FROM sys.database_principals "
            "WHERE principal_id > 4 AND is_fixed_role = 0 AND type IN ('S', 'U', 'G', 'C', 'K', 'E', 'X', 'R', 'A')"
        )
        for principal_id, name, ptype in self.connection.execute_query(q):
            if ptype == "R":
                urn = self._child_urn(database, "Role", name)
                repository.add(EntityInfo(urn, object_id=int(principal_id)))
            elif ptype == "A":
                urn = self._child_urn(database, "ApplicationRole", name)
                repository.add(EntityInfo(urn, object_id=int(principal_id)))
            else:
                urn = self._child_urn(database, "User", name)
                repository.add(EntityInfo(urn, object_id=int(principal_id), user_type=PRINCIPAL_TYPES.get(ptype)))

    def _extract_crypto(self, repository: EntityRepository) -> None:
        database = self._database_urn()
        queries = (
            ("SqlAssembly", "SELECT assembly_id, name FROM sys.assemblies WHERE is_user_defined = 1"),
            ("Certificate", "SELECT certificate_id, name FROM sys.certificates WHERE name NOT LIKE '##%'"),
            ("AsymmetricKey", "SELECT asymmetric_key_id, name FROM sys.asymmetric_keys WHERE name NOT LIKE '##%'"),
        )
        for kind, q in queries:
            for object_id, name in self.connection.execute_query(q):
                repository.add(EntityInfo(self._child_urn(database, kind, name), object_id=int(object_id)))

    def _extract_ddl_triggers(self, repository: EntityRepository) -> None:
        database = self._database_urn()
        q = "SELECT object_id, name FROM sys.triggers WHERE parent_class = 0 AND is_ms_shipped = 0"
        for object_id, name in self.connection.execute_query(q):
            repository.add(EntityInfo(self._child_urn(database, "DdlTrigger", name), object_id=int(object_id)))

    def _extract_server_ddl_triggers(self, repository: EntityRepository) -> None:
        server = self._server_urn()
        q = "SELECT object_id, name FROM sys.server_triggers WHERE is_ms_shipped = 0"
        for object_id, name in self.connection.execute_query(q):
            repository.add(EntityInfo(self._child_urn(server, "DdlTrigger", name), object_id=int(object_id)))

    # -- dependency pairs --------------------------------------------------

    def _extract_dependencies(self, catalog: SnapshotCatalog, server: ServerInfo, include_server: bool) -> None:
        queries: List[Tuple[str, str]] = [
            (FOREIGN_KEYS,
             "SELECT DISTINCT parent_object_id, referenced_object_id FROM sys.foreign_key_columns "
             "WHERE parent_object_id != referenced_object_id"),
            (ASSEMBLIES, "SELECT assembly_id, referenced_assembly_id FROM sys.assembly_references"),
            (ROLES,
             "SELECT principal_id, owning_principal_id FROM sys.database_principals "
             "WHERE type = 'R' AND owning_principal_id IS NOT NULL"),
            (EXPRESSIONS,
             "SELECT DISTINCT referencing_id, referenced_id FROM sys.sql_expression_dependencies "
             "WHERE referenced_id IS NOT NULL AND referencing_id != referenced_id"),
        ]
        if server.supports_temporal:
            queries.append((TEMPORAL, "SELECT history_table_id, object_id FROM sys.tables WHERE temporal_type = 2"))

        for family, q in queries:
            pairs = [(a, b) for a, b in self.connection.execute_query(q) if a is not None and b is not None]
            catalog.add_pairs(self.database, family, pairs)
            logger.debug(f"Captured {len(pairs)} {family} pairs")

        if include_server:
            q = (
                "SELECT principal_id, owning_principal_id FROM sys.server_principals "
                "WHERE type = 'R' AND owning_principal_id IS NOT NULL"
            )
            pairs = [(a, b) for a, b in self.connection.execute_query(q)]
            catalog.add_pairs(SERVER_SCOPE, ROLES, pairs)
