"""Dependency orderer: turns an unordered identifier set into a script sequence."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from sql_script_orderer.core import entities
from sql_script_orderer.core import kinds as k
from sql_script_orderer.core import phases
from sql_script_orderer.core.catalog_queries import (
    ASSEMBLY_QUERY,
    DATABASE_ROLE_QUERY,
    SERVER_ROLE_QUERY,
    DependencyQuery,
    foreign_key_query,
    schema_bound_query,
)
from sql_script_orderer.core.entities import EntityRepository, InCreationRegistry
from sql_script_orderer.core.kinds import DEFAULT_KIND_TABLE, KindTable
from sql_script_orderer.core.options import ScriptingOptions, ServerInfo
from sql_script_orderer.core.registry import UrnBuckets
from sql_script_orderer.core.resolver import CatalogAccess, DependencyResolver
from sql_script_orderer.core.urn import Urn
from sql_script_orderer.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class OrderingPlan:
    """Ordered identifiers plus the children folded into their owning tables."""

    urns: List[Urn] = field(default_factory=list)
    embedded: Dict[Urn, List[Urn]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.urns)

    def __iter__(self):
        return iter(self.urns)


class DependencyOrderer:
    """Orders identifiers by kind rank, catalog dependencies and derived phases.

    Args:
        repository: Entity metadata lookup
        catalog: Catalog access used for dependency queries; only needed when
            more than one persisted member of a dependent kind family is present
        options: Scripting options, validated on construction
        server: Target server description
        creating: Identifiers with no catalog identity yet; defaults to the
            repository records marked as creating
        kind_table: Kind to rank table
    """

    def __init__(
        self,
        repository: EntityRepository,
        catalog: Optional[CatalogAccess] = None,
        options: Optional[ScriptingOptions] = None,
        server: Optional[ServerInfo] = None,
        creating: Optional[InCreationRegistry] = None,
        kind_table: KindTable = DEFAULT_KIND_TABLE,
    ) -> None:
        self.repository = repository
        self.catalog = catalog
        self.options = (options or ScriptingOptions()).validate()
        self.server = server or ServerInfo()
        self.creating = creating if creating is not None else InCreationRegistry.from_repository(repository)
        self.kind_table = kind_table

    def order(self, urns: Iterable[Urn]) -> List[Urn]:
        return self.plan(urns).urns

    def plan(self, urns: Iterable[Urn]) -> OrderingPlan:
        """Build the full ordering plan for ``urns``.

        Raises:
            ConfigurationError: An identifier or sub-kind has no mapping
            OrderingCycleError: A kind family has cyclic catalog dependencies
        """
        run = _OrderingRun(self)
        result = run.execute(list(urns))
        logger.info(f"Ordered {len(result.urns)} script positions ({len(result.embedded)} tables with embedded children)")
        return result


class _OrderingRun:
    """State of a single ``plan`` call."""

    def __init__(self, orderer: DependencyOrderer) -> None:
        self.repository = orderer.repository
        self.options = orderer.options
        self.server = orderer.server
        self.creating = orderer.creating
        self.kind_table = orderer.kind_table
        self.resolver = DependencyResolver(orderer.catalog, orderer.repository, orderer.creating, orderer.server)
        self.buckets = UrnBuckets(orderer.kind_table)
        self.embedded: Dict[Urn, List[Urn]] = {}

    def execute(self, urns: List[Urn]) -> OrderingPlan:
        stored = self.store(urns)
        logger.debug(f"Registered {len(stored)} of {len(urns)} identifiers in {len(self.buckets.keys())} buckets")
        if not stored:
            return OrderingPlan([])
        if len(stored) == 1:
            return OrderingPlan(self.single(stored[0]))

        if self.options.include_ddl:
            self.resolve_ddl()
        else:
            self.resolve_data_only()
        return OrderingPlan(phases.flatten(self.buckets), self.embedded)

    def store(self, urns: List[Urn]) -> List[Urn]:
        # Repeated identifiers keep their first position
        urns = list(dict.fromkeys(urns))
        # Data-only scripting considers tables only
        if not self.options.include_ddl:
            urns = [u for u in urns if self.kind_table.kind_of(u) == k.TABLE]
        for urn in urns:
            self.buckets.add(urn)
        return urns

    def single(self, urn: Urn) -> List[Urn]:
        kind = self.kind_table.kind_of(urn)
        if kind == k.TABLE:
            result = [urn] if self.options.include_ddl else []
            if self.options.include_data and not self.creating.contains(urn):
                result.append(urn.with_phase(k.PHASE_DATA))
            return result
        if not self.options.include_ddl:
            return []
        if kind in (k.LOGIN, k.SERVER_ROLE):
            result = [urn]
            if not self.creating.contains(urn):
                result.append(urn.with_phase(k.PHASE_ASSOCIATIONS))
            return result
        if kind == k.DATABASE:
            return [urn, urn.with_phase(k.PHASE_DATABASE_READONLY)]
        return [urn]

    def embed(self, table: Urn, child: Urn) -> None:
        self.embedded.setdefault(table, []).append(child)

    # -- DDL passes -------------------------------------------------------

    def resolve_ddl(self) -> None:
        self.resolve_assemblies()
        phases.add_ddl_trigger_phases(self.buckets, self.options)
        self.resolve_security()
        self.resolve_tables()
        if self.options.include_data:
            phases.add_persisted_table_data(self.buckets, self.creating)
        phases.place_indexes(self.buckets, self.repository, self.options, self.embed)
        if self.options.is_drop:
            phases.attach_foreign_keys(self.buckets, self.repository)
        elif self.server.is_design_mode:
            phases.embed_table_constraints(self.buckets, self.embed)
        self.resolve_schema_bound()

    def resolve_family(self, kind: str, query: DependencyQuery) -> None:
        members = self.buckets.get(kind)
        if not members or len(members) < 2:
            return
        self.buckets.set(kind, self.resolver.resolve(members, query))
        logger.debug(f"Ordered {len(members)} members of {kind} with {query.name}")

    def resolve_assemblies(self) -> None:
        self.resolve_family(k.SQL_ASSEMBLY, ASSEMBLY_QUERY)

    def resolve_security(self) -> None:
        phases.split_server_principals(self.buckets, self.repository)
        phases.split_database_principals(self.buckets, self.repository)
        # Roles owned by other roles of the set come after their owner
        self.resolve_family(k.SERVER_ROLE, SERVER_ROLE_QUERY)
        self.resolve_family(k.DATABASE_ROLE, DATABASE_ROLE_QUERY)
        phases.add_security_phases(self.buckets, self.options)

    def resolve_tables(self) -> None:
        """Tables referenced by a foreign key come before the tables referencing them."""
        self.resolve_family(k.TABLE, foreign_key_query(self.server))

    def resolve_schema_bound(self) -> None:
        """Order functions, procedures, views and tables that reference each other.

        Tables join the dependency query when the server supports temporal
        tables or a schema-bound scalar function or procedure is present.
        Their foreign key pairs are queried along with the expression
        dependencies so the table order from ``resolve_tables`` still holds.
        """
        schema_bound: List[Urn] = []
        needs_tables = self.server.supports_temporal

        for udf in self.buckets.pop(k.USER_DEFINED_FUNCTION):
            info = self.repository.resolve(udf)
            if self.creating.contains(udf):
                self.buckets.extend(k.CREATING_UDF, [udf])
            elif not info.is_schema_bound and info.function_type != entities.FUNCTION_INLINE:
                self.buckets.extend(k.SCALAR_UDF, [udf])
            else:
                schema_bound.append(udf)
                if info.function_type == entities.FUNCTION_SCALAR:
                    needs_tables = True

        for sproc in self.buckets.pop(k.STORED_PROCEDURE):
            if self.creating.contains(sproc):
                self.buckets.extend(k.CREATING_SPROC, [sproc])
            elif self.repository.resolve(sproc).is_schema_bound:
                schema_bound.append(sproc)
                needs_tables = True
            else:
                self.buckets.extend(k.NON_SCHEMA_BOUND_SPROC, [sproc])

        existing, creating = self.resolver.partition(self.buckets.pop(k.VIEW))
        schema_bound.extend(existing)
        self.buckets.extend(k.CREATING_VIEW, creating)

        tables: List[Urn] = []
        if needs_tables and k.TABLE in self.buckets:
            tables, creating = self.resolver.partition(self.buckets.pop(k.TABLE))
            schema_bound.extend(tables)
            self.buckets.extend(k.CREATING_TABLE, creating)

        if not schema_bound:
            return
        query = schema_bound_query(self.server, with_foreign_keys=len(tables) > 1)
        logger.debug(f"Ordering {len(schema_bound)} schema-bound objects with {query.name}")
        self.buckets.set(k.TABLE_VIEW_UDF, self.resolver.resolve(schema_bound, query))

    # -- data-only pass ---------------------------------------------------

    def resolve_data_only(self) -> None:
        tables = [t for t in self.buckets.pop(k.TABLE) if not self.creating.contains(t)]
        phases.add_table_data(self.buckets, self.resolver.resolve(tables, foreign_key_query(self.server)))
