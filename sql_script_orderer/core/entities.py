"""Entity metadata records, the repository that resolves them and the in-creation registry."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from sql_script_orderer.core.exceptions import EntityNotFoundError
from sql_script_orderer.core.urn import Urn

EXISTING = "existing"
CREATING = "creating"

# Index sub-kinds as reported by the metadata layer
CLUSTERED_INDEX = "ClusteredIndex"
NONCLUSTERED_INDEX = "NonClusteredIndex"
PRIMARY_XML_INDEX = "PrimaryXmlIndex"
SECONDARY_XML_INDEX = "SecondaryXmlIndex"
SELECTIVE_XML_INDEX = "SelectiveXmlIndex"
SECONDARY_SELECTIVE_XML_INDEX = "SecondarySelectiveXmlIndex"
SPATIAL_INDEX = "SpatialIndex"
NONCLUSTERED_COLUMNSTORE_INDEX = "NonClusteredColumnStoreIndex"
CLUSTERED_COLUMNSTORE_INDEX = "ClusteredColumnStoreIndex"
NONCLUSTERED_HASH_INDEX = "NonClusteredHashIndex"
HEAP_INDEX = "HeapIndex"
VECTOR_INDEX = "VectorIndex"
JSON_INDEX = "JsonIndex"

# Index key types
KEY_NONE = "None"
KEY_PRIMARY = "DriPrimaryKey"
KEY_UNIQUE = "DriUniqueKey"

# Login / user types backed by a certificate or asymmetric key
CERTIFICATE = "Certificate"
ASYMMETRIC_KEY = "AsymmetricKey"
KEY_BACKED_PRINCIPALS = (CERTIFICATE, ASYMMETRIC_KEY)

# Function types
FUNCTION_SCALAR = "Scalar"
FUNCTION_TABLE = "Table"
FUNCTION_INLINE = "Inline"


@dataclass
class EntityInfo:
    """Metadata the orderer consults for one entity.

    Only the fields relevant to the entity's kind are populated; the rest keep
    their defaults.
    """

    urn: Urn
    object_id: Optional[int] = None
    state: str = EXISTING
    index_type: Optional[str] = None
    index_key_type: str = KEY_NONE
    is_memory_optimized: bool = False
    login_type: Optional[str] = None
    user_type: Optional[str] = None
    is_schema_bound: bool = False
    function_type: Optional[str] = None
    is_filestream_table: bool = False
    foreign_keys: List[Urn] = field(default_factory=list)
    is_file_table_defined: bool = False

    @property
    def is_creating(self) -> bool:
        return self.state == CREATING

    @property
    def is_key(self) -> bool:
        return bool(self.index_key_type) and self.index_key_type != KEY_NONE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntityInfo":
        return cls(
            urn=Urn(data["urn"]),
            object_id=data.get("object_id"),
            state=data.get("state", EXISTING),
            index_type=data.get("index_type"),
            index_key_type=data.get("index_key_type") or KEY_NONE,
            is_memory_optimized=bool(data.get("is_memory_optimized", False)),
            login_type=data.get("login_type"),
            user_type=data.get("user_type"),
            is_schema_bound=bool(data.get("is_schema_bound", False)),
            function_type=data.get("function_type"),
            is_filestream_table=bool(data.get("is_filestream_table", False)),
            foreign_keys=[Urn(u) for u in data.get("foreign_keys", [])],
            is_file_table_defined=bool(data.get("is_file_table_defined", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"urn": str(self.urn), "state": self.state}
        if self.object_id is not None:
            data["object_id"] = self.object_id
        if self.index_type:
            data["index_type"] = self.index_type
            data["index_key_type"] = self.index_key_type
        if self.is_memory_optimized:
            data["is_memory_optimized"] = True
        if self.login_type:
            data["login_type"] = self.login_type
        if self.user_type:
            data["user_type"] = self.user_type
        if self.is_schema_bound:
            data["is_schema_bound"] = True
        if self.function_type:
            data["function_type"] = self.function_type
        if self.is_filestream_table:
            data["is_filestream_table"] = True
        if self.foreign_keys:
            data["foreign_keys"] = [str(u) for u in self.foreign_keys]
        if self.is_file_table_defined:
            data["is_file_table_defined"] = True
        return data


class EntityRepository:
    """In-memory lookup of entity metadata by urn."""

    def __init__(self, entities: Iterable[EntityInfo] = ()) -> None:
        self._entities: Dict[Urn, EntityInfo] = {}
        for entity in entities:
            self.add(entity)

    def add(self, entity: EntityInfo) -> None:
        self._entities[entity.urn] = entity

    def resolve(self, urn: Urn) -> EntityInfo:
        entity = self._entities.get(urn)
        if entity is None:
            raise EntityNotFoundError(f"No metadata available for {urn}", urn=urn)
        return entity

    def get(self, urn: Urn) -> Optional[EntityInfo]:
        return self._entities.get(urn)

    def __contains__(self, urn: Urn) -> bool:
        return urn in self._entities

    def __iter__(self):
        return iter(self._entities.values())

    def __len__(self) -> int:
        return len(self._entities)


class InCreationRegistry:
    """Identifiers of entities that exist only in memory and have no catalog identity yet."""

    def __init__(self, urns: Iterable[Urn] = ()) -> None:
        self._urns = set(urns)

    @classmethod
    def from_repository(cls, repository: EntityRepository) -> "InCreationRegistry":
        return cls(entity.urn for entity in repository if entity.is_creating)

    def contains(self, urn: Urn) -> bool:
        return urn in self._urns

    __contains__ = contains

    def __len__(self) -> int:
        return len(self._urns)
