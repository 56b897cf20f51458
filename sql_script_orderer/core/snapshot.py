"""Entity snapshots: entity metadata plus catalog dependency pairs saved as JSON.

A snapshot lets the orderer run without a live server. Its catalog answers
the same dependency queries ``DatabaseConnection`` does, from recorded pairs.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from sql_script_orderer.core.entities import EntityInfo, EntityRepository
from sql_script_orderer.core.options import ServerInfo
from sql_script_orderer.utils.logger import get_logger

logger = get_logger(__name__)

SNAPSHOT_VERSION = 1

# Dependency families recorded per database
ASSEMBLIES = "assemblies"
ROLES = "roles"
FOREIGN_KEYS = "foreign_keys"
EXPRESSIONS = "expressions"
TEMPORAL = "temporal"
FAMILIES = (ASSEMBLIES, ROLES, FOREIGN_KEYS, EXPRESSIONS, TEMPORAL)

# Key for server-level pairs (server roles)
SERVER_SCOPE = ""

_FAMILY_MARKERS: Tuple[Tuple[str, str], ...] = (
    ("sys.assembly_references", ASSEMBLIES),
    ("sys.server_principals", ROLES),
    ("sys.database_principals", ROLES),
    ("sys.foreign_key_columns", FOREIGN_KEYS),
    ("dbo.sysreferences", FOREIGN_KEYS),
    ("sys.sql_expression_dependencies", EXPRESSIONS),
    ("sys.sql_dependencies", EXPRESSIONS),
    ("dbo.sysdepends", EXPRESSIONS),
    ("[temporal_type]", TEMPORAL),
)

_INSERT_RE = re.compile(r"insert into #tempordering\(ID\) values (?P<values>.*?);", re.IGNORECASE)
_ID_RE = re.compile(r"\((\d+)\)")

Pair = Tuple[int, int]


def save_snapshot(path: str | Path, metadata: Dict[str, Any]) -> None:
    """Save a snapshot payload wrapped with a version header."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    payload = {"version": SNAPSHOT_VERSION, "metadata": metadata}
    p.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")


def load_snapshot(path: str | Path) -> Dict[str, Any]:
    """Load a snapshot payload.

    Accepts the wrapped format {"version": .., "metadata": ..} and a plain
    metadata object.
    """
    p = Path(path)
    if not p.exists():
        raise ValueError(f"Snapshot file not found: {p}")
    data = json.loads(p.read_text(encoding="utf-8"))
    if isinstance(data, dict) and "metadata" in data:
        version = data.get("version", SNAPSHOT_VERSION)
        if version > SNAPSHOT_VERSION:
            raise ValueError(f"Snapshot version {version} is newer than supported version {SNAPSHOT_VERSION}")
        return data["metadata"]
    if isinstance(data, dict):
        return data
    raise ValueError("Snapshot file does not contain a metadata object")


def query_families(query: str) -> List[str]:
    families = []
    for marker, family in _FAMILY_MARKERS:
        if marker in query and family not in families:
            families.append(family)
    return families


class SnapshotCatalog:
    """Catalog access backed by recorded (referencer id, referenced id) pairs.

    ``dependencies`` maps a database name (``""`` for server scope) to a map of
    family name to pairs.
    """

    def __init__(self, dependencies: Optional[Dict[str, Dict[str, Sequence[Sequence[int]]]]] = None) -> None:
        self.dependencies: Dict[str, Dict[str, List[Pair]]] = {}
        for database, families in (dependencies or {}).items():
            for family, pairs in families.items():
                self.add_pairs(database, family, pairs)

    def add_pairs(self, database: Optional[str], family: str, pairs: Sequence[Sequence[int]]) -> None:
        if family not in FAMILIES:
            raise ValueError(f"Unknown dependency family: {family}")
        bucket = self.dependencies.setdefault(database or SERVER_SCOPE, {}).setdefault(family, [])
        bucket.extend((int(a), int(b)) for a, b in pairs)

    def pairs(self, database: Optional[str], family: str) -> List[Pair]:
        return list(self.dependencies.get(database or SERVER_SCOPE, {}).get(family, []))

    def run_query(self, query_template: str, ids: Sequence[int], database: Optional[str] = None) -> List[Pair]:
        return self._answer(query_template, {int(i) for i in ids}, database)

    def run_batched_query(self, statements: Sequence[str], database: Optional[str] = None) -> List[Pair]:
        ids: Set[int] = set()
        query = None
        for statement in statements:
            match = _INSERT_RE.match(statement.strip())
            if match:
                ids.update(int(i) for i in _ID_RE.findall(match.group("values")))
            elif query_families(statement):
                query = statement
        if query is None:
            raise ValueError("Statement batch contains no dependency query")
        return self._answer(query, ids, database)

    def _answer(self, query: str, ids: Set[int], database: Optional[str]) -> List[Pair]:
        families = query_families(query)
        if not families:
            raise ValueError(f"Unrecognized dependency query: {query[:80]}")
        rows: List[Pair] = []
        for family in families:
            for a, b in self.pairs(database, family):
                if a != b and a in ids and b in ids and (a, b) not in rows:
                    rows.append((a, b))
        logger.debug(f"Snapshot answered {'+'.join(families)} for {len(ids)} ids with {len(rows)} pairs")
        return rows

    def to_dict(self) -> Dict[str, Dict[str, List[List[int]]]]:
        return {
            database: {family: [list(p) for p in pairs] for family, pairs in families.items()}
            for database, families in self.dependencies.items()
        }


@dataclass
class EntitySnapshot:
    """Everything the orderer needs: server description, entities and catalog pairs."""

    server: ServerInfo = field(default_factory=ServerInfo)
    repository: EntityRepository = field(default_factory=EntityRepository)
    catalog: SnapshotCatalog = field(default_factory=SnapshotCatalog)

    @classmethod
    def from_metadata(cls, metadata: Dict[str, Any]) -> "EntitySnapshot":
        repository = EntityRepository(EntityInfo.from_dict(item) for item in metadata.get("entities", []))
        return cls(
            server=ServerInfo.from_dict(metadata.get("server")),
            repository=repository,
            catalog=SnapshotCatalog(metadata.get("dependencies")),
        )

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "server": self.server.to_dict(),
            "entities": [entity.to_dict() for entity in self.repository],
            "dependencies": self.catalog.to_dict(),
        }

    @classmethod
    def load(cls, path: str | Path) -> "EntitySnapshot":
        snapshot = cls.from_metadata(load_snapshot(path))
        logger.info(f"Loaded snapshot {path} with {len(snapshot.repository)} entities")
        return snapshot

    def save(self, path: str | Path) -> None:
        save_snapshot(path, self.to_metadata())
        logger.info(f"Saved snapshot {path} with {len(self.repository)} entities")
