"""Catalog queries that return (referencer id, referenced id) dependency pairs.

Queries come in two shapes: an ``IN (...)`` list substituted for ``{0}``, or a
statement batch that loads the candidate ids into ``#tempordering`` first.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from sql_script_orderer.core.options import ServerInfo

TEMP_TABLE = "#tempordering"

ASSEMBLY_REFERENCES = (
    "select assembly_id,referenced_assembly_id from sys.assembly_references "
    "where assembly_id in ({0}) and referenced_assembly_id in ({0})"
)

EXPRESSION_DEPENDENCIES = (
    "select dep.referencing_id,dep.referenced_id from sys.sql_expression_dependencies as dep "
    "join #tempordering as t1 on dep.referenced_id = t1.ID "
    "join #tempordering as t2 on dep.referencing_id = t2.ID "
    "where dep.referenced_id != dep.referencing_id"
)

# A history table follows the system-versioned table it belongs to
TEMPORAL_HISTORY_PAIRS = (
    "select tbl.[history_table_id],tbl.[object_id] from sys.tables as tbl "
    "join #tempordering as t1 on tbl.[object_id] = t1.ID "
    "join #tempordering as t2 on tbl.[history_table_id] = t2.ID "
    "where tbl.[temporal_type] = 2"
)

SQL_DEPENDENCIES = (
    "select dep.object_id,dep.referenced_major_id from sys.sql_dependencies as dep "
    "join #tempordering as t1 on dep.referenced_major_id = t1.ID "
    "join #tempordering as t2 on dep.object_id = t2.ID "
    "where dep.referenced_major_id != dep.object_id"
)

SYSDEPENDS = (
    "select dep.id,dep.depid from dbo.sysdepends as dep "
    "join #tempordering as t1 on dep.depid = t1.ID "
    "join #tempordering as t2 on dep.id = t2.ID "
    "where dep.depid != dep.id"
)

FOREIGN_KEY_COLUMNS = (
    "select fk.parent_object_id,fk.referenced_object_id from sys.foreign_key_columns as fk "
    "join #tempordering as t1 on fk.referenced_object_id = t1.ID "
    "join #tempordering as t2 on fk.parent_object_id = t2.ID "
    "where fk.referenced_object_id != fk.parent_object_id"
)

SYSREFERENCES = (
    "select fk.fkeyid,fk.rkeyid from dbo.sysreferences as fk "
    "join #tempordering as t1 on fk.rkeyid = t1.ID "
    "join #tempordering as t2 on fk.fkeyid = t2.ID "
    "where fk.rkeyid != fk.fkeyid"
)

# A role depends on the role that owns it
SERVER_ROLE_OWNERS = (
    "select principal_id,owning_principal_id from sys.server_principals "
    "where type = 'R' and principal_id in ({0}) and owning_principal_id in ({0})"
)

DATABASE_ROLE_OWNERS = (
    "select principal_id,owning_principal_id from sys.database_principals "
    "where type = 'R' and principal_id in ({0}) and owning_principal_id in ({0})"
)


@dataclass(frozen=True)
class DependencyQuery:
    """A dependency query template and how its candidate ids are supplied."""

    name: str
    template: str
    uses_temp_table: bool = True

    def in_list(self, ids: Sequence[int]) -> str:
        if not ids:
            raise ValueError(f"Query {self.name} needs at least one id")
        return self.template.format(",".join(str(int(i)) for i in ids))

    def statements(self, ids: Sequence[int], batch_size: int = 1000, is_sql_dw: bool = False) -> List[str]:
        """Statement batch: create temp table, insert ids in batches, query, drop.

        Each id lands in exactly one insert statement.
        """
        if not ids:
            raise ValueError(f"Query {self.name} needs at least one id")
        if batch_size < 1:
            raise ValueError(f"Batch size must be positive, got {batch_size}")
        if is_sql_dw:
            statements = [f"create table {TEMP_TABLE}(ID int)"]
        else:
            statements = [f"create table {TEMP_TABLE}(ID int primary key)"]
        for start in range(0, len(ids), batch_size):
            chunk = ids[start:start + batch_size]
            values = ",".join(f"({int(i)})" for i in chunk)
            statements.append(f"insert into {TEMP_TABLE}(ID) values {values};")
        statements.append(self.template)
        statements.append(f"drop table {TEMP_TABLE}")
        return statements


ASSEMBLY_QUERY = DependencyQuery("assembly_references", ASSEMBLY_REFERENCES, uses_temp_table=False)
SERVER_ROLE_QUERY = DependencyQuery("server_role_owners", SERVER_ROLE_OWNERS, uses_temp_table=False)
DATABASE_ROLE_QUERY = DependencyQuery("database_role_owners", DATABASE_ROLE_OWNERS, uses_temp_table=False)


def schema_bound_query(server: ServerInfo, with_foreign_keys: bool = False) -> DependencyQuery:
    """Dependency query for routines, views and tables, picked by server version.

    ``with_foreign_keys`` adds the foreign key pairs so tables among the
    candidates keep their referenced tables first.
    """
    if server.supports_temporal:
        query = DependencyQuery(
            "expression_dependencies_temporal",
            f"{EXPRESSION_DEPENDENCIES} UNION {TEMPORAL_HISTORY_PAIRS}",
        )
    elif server.version_major > 9:
        query = DependencyQuery("expression_dependencies", EXPRESSION_DEPENDENCIES)
    elif server.version_major > 8:
        query = DependencyQuery("sql_dependencies", SQL_DEPENDENCIES)
    else:
        query = DependencyQuery("sysdepends", SYSDEPENDS)
    if not with_foreign_keys:
        return query
    foreign_keys = foreign_key_query(server)
    return DependencyQuery(f"{query.name}_{foreign_keys.name}", f"{query.template} UNION {foreign_keys.template}")


def foreign_key_query(server: ServerInfo) -> DependencyQuery:
    if server.version_major > 8:
        return DependencyQuery("foreign_key_columns", FOREIGN_KEY_COLUMNS)
    return DependencyQuery("sysreferences", SYSREFERENCES)
