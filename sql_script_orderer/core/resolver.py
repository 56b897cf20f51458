"""Dependency resolution for kind families whose order needs the live catalog."""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from sql_script_orderer.core.catalog_queries import DependencyQuery
from sql_script_orderer.core.entities import EntityRepository, InCreationRegistry
from sql_script_orderer.core.exceptions import ConfigurationError, OrderingCycleError
from sql_script_orderer.core.options import ServerInfo
from sql_script_orderer.core.toposort import adjacency_from_pairs, topological_sort
from sql_script_orderer.core.urn import Urn
from sql_script_orderer.utils.logger import get_logger

logger = get_logger(__name__)


class CatalogAccess(Protocol):
    """Read-only access to one server's catalog."""

    def run_query(self, query_template: str, ids: Sequence[int], database: Optional[str] = None) -> List[Tuple[Any, ...]]:
        ...

    def run_batched_query(self, statements: Sequence[str], database: Optional[str] = None) -> List[Tuple[Any, ...]]:
        ...


class DependencyResolver:
    """Orders candidate urns of one kind family using catalog dependency pairs."""

    def __init__(
        self,
        catalog: Optional[CatalogAccess],
        repository: EntityRepository,
        creating: InCreationRegistry,
        server: ServerInfo,
    ) -> None:
        self.catalog = catalog
        self.repository = repository
        self.creating = creating
        self.server = server

    def partition(self, urns: Iterable[Urn]) -> Tuple[List[Urn], List[Urn]]:
        """Split into (persisted, being created), each in input order."""
        existing: List[Urn] = []
        creating: List[Urn] = []
        for urn in urns:
            (creating if self.creating.contains(urn) else existing).append(urn)
        return existing, creating

    def resolve(self, urns: Sequence[Urn], query: DependencyQuery) -> List[Urn]:
        """Persisted members in dependency order per database, then being-created members in input order."""
        existing, creating = self.partition(urns)
        ordered: List[Urn] = []
        for group in group_by_parent(existing).values():
            ordered.extend(self.order(group, query))
        return ordered + creating

    def order(self, urns: Sequence[Urn], query: DependencyQuery) -> List[Urn]:
        """Order persisted urns of a single database by the pairs ``query`` returns."""
        if len(urns) < 2:
            return list(urns)
        if self.catalog is None:
            raise ConfigurationError(
                f"Ordering {len(urns)} objects needs catalog access for {query.name}", urn=urns[0]
            )

        id_map = self._id_map(urns)
        ids = list(id_map)
        database = urns[0].database_name
        logger.debug(f"Running {query.name} for {len(ids)} objects in database {database}")
        try:
            if query.uses_temp_table:
                rows = self.catalog.run_batched_query(
                    query.statements(ids, self.server.batch_size, self.server.is_sql_dw), database=database
                )
            else:
                rows = self.catalog.run_query(query.template, ids, database=database)
        except Exception as exc:
            logger.error(f"Dependency query {query.name} failed for database {database}: {exc}", exc_info=True)
            raise

        return self.sort_rows(rows, id_map)

    def sort_rows(self, rows: Iterable[Sequence[Any]], id_map: Dict[int, Urn]) -> List[Urn]:
        pairs = [(int(row[0]), int(row[1])) for row in rows if row[0] is not None and row[1] is not None]
        adjacency = adjacency_from_pairs(id_map, pairs)
        edges = sum(len(v) for v in adjacency.values())
        logger.debug(f"Sorting {len(adjacency)} objects with {edges} dependency edges")
        try:
            ordered_ids = topological_sort(adjacency)
        except OrderingCycleError as exc:
            exc.urns = [id_map[i] for i in exc.cycle if i in id_map]
            logger.error(f"{exc}")
            raise
        return [id_map[i] for i in ordered_ids if i in id_map]

    def _id_map(self, urns: Sequence[Urn]) -> Dict[int, Urn]:
        id_map: Dict[int, Urn] = {}
        for urn in urns:
            object_id = self.repository.resolve(urn).object_id
            if object_id is None:
                raise ConfigurationError(f"{urn} has no catalog object id", urn=urn)
            if object_id in id_map and id_map[object_id] != urn:
                raise ConfigurationError(
                    f"{urn} and {id_map[object_id]} share catalog object id {object_id}", urn=urn
                )
            id_map[int(object_id)] = urn
        return id_map


def group_by_parent(urns: Iterable[Urn]) -> Dict[Optional[Urn], List[Urn]]:
    """Group urns by parent (their database for schema-scoped objects), keeping first-seen order."""
    groups: Dict[Optional[Urn], List[Urn]] = {}
    for urn in urns:
        groups.setdefault(urn.parent, []).append(urn)
    return groups
