"""Phase expansion rules applied to the bucketed identifiers.

Each rule rewrites buckets in place and is guarded by the scripting options.
Derived identifiers are new ``<urn>/<tag>/Special`` values; inputs are never
mutated.
"""
from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional

from sql_script_orderer.core import entities
from sql_script_orderer.core import kinds as k
from sql_script_orderer.core.entities import EntityRepository, InCreationRegistry
from sql_script_orderer.core.exceptions import ConfigurationError
from sql_script_orderer.core.options import ScriptingOptions
from sql_script_orderer.core.registry import UrnBuckets
from sql_script_orderer.core.urn import Urn
from sql_script_orderer.utils.logger import get_logger

logger = get_logger(__name__)

Embed = Callable[[Urn, Urn], None]

MASTER_DATABASE = "master"

# Index sub-kind -> bucket; None means the index is never emitted on its own
INDEX_BUCKETS: Dict[str, Optional[str]] = {
    entities.CLUSTERED_INDEX: k.CLUSTERED_INDEX,
    entities.NONCLUSTERED_INDEX: k.NONCLUSTERED_INDEX,
    entities.PRIMARY_XML_INDEX: k.PRIMARY_XML_INDEX,
    entities.SECONDARY_XML_INDEX: k.SECONDARY_XML_INDEX,
    entities.SELECTIVE_XML_INDEX: k.SELECTIVE_XML_INDEX,
    entities.SECONDARY_SELECTIVE_XML_INDEX: k.SECONDARY_SELECTIVE_XML_INDEX,
    entities.SPATIAL_INDEX: k.SPATIAL_INDEX,
    entities.NONCLUSTERED_COLUMNSTORE_INDEX: k.COLUMNSTORE_INDEX,
    entities.CLUSTERED_COLUMNSTORE_INDEX: k.CLUSTERED_COLUMNSTORE_INDEX,
    entities.NONCLUSTERED_HASH_INDEX: None,
    entities.HEAP_INDEX: None,
    entities.VECTOR_INDEX: k.VECTOR_INDEX,
    entities.JSON_INDEX: k.JSON_INDEX,
}

# Security buckets rewritten to "<urn>/Object/Special" once any security phase is emitted
SECURITY_OBJECT_KINDS = (
    k.DATABASE,
    k.LOGIN,
    k.MASTER_ASSEMBLY,
    k.MASTER_CERTIFICATE,
    k.MASTER_ASYMMETRIC_KEY,
    k.CERTIFICATE_KEY_LOGIN,
    k.SERVER_ROLE,
    k.APPLICATION_ROLE,
    k.USER,
    k.USER_ASSEMBLY,
    k.USER_CERTIFICATE,
    k.USER_ASYMMETRIC_KEY,
    k.CERTIFICATE_KEY_USER,
    k.DATABASE_ROLE,
)

SERVER_ASSOCIATION_KINDS = (k.LOGIN, k.CERTIFICATE_KEY_LOGIN, k.SERVER_ROLE)
DATABASE_ASSOCIATION_KINDS = (k.USER, k.CERTIFICATE_KEY_USER, k.DATABASE_ROLE)
SERVER_OWNERSHIP_KINDS = (k.SERVER_ROLE, k.DATABASE)
DATABASE_OWNERSHIP_KINDS = (
    k.MASTER_ASSEMBLY,
    k.MASTER_CERTIFICATE,
    k.MASTER_ASYMMETRIC_KEY,
    k.USER_ASSEMBLY,
    k.USER_CERTIFICATE,
    k.USER_ASYMMETRIC_KEY,
    k.DATABASE_ROLE,
)
SERVER_PERMISSION_KINDS = (k.LOGIN, k.CERTIFICATE_KEY_LOGIN, k.SERVER_ROLE)
DATABASE_PERMISSION_KINDS = (
    k.DATABASE,
    k.USER,
    k.CERTIFICATE_KEY_USER,
    k.MASTER_ASSEMBLY,
    k.MASTER_CERTIFICATE,
    k.MASTER_ASYMMETRIC_KEY,
    k.USER_ASSEMBLY,
    k.USER_CERTIFICATE,
    k.USER_ASYMMETRIC_KEY,
    k.DATABASE_ROLE,
)


def add_table_data(buckets: UrnBuckets, tables: Iterable[Urn]) -> None:
    buckets.extend(k.DATA, (t.with_phase(k.PHASE_DATA) for t in tables))


def add_persisted_table_data(buckets: UrnBuckets, creating: InCreationRegistry) -> None:
    """Data phase for every table of the set that already exists on the server."""
    tables = buckets.get(k.TABLE) or []
    add_table_data(buckets, [t for t in tables if not creating.contains(t)])


# ---------------------------------------------------------------------------
# DDL triggers
# ---------------------------------------------------------------------------

def add_ddl_trigger_phases(buckets: UrnBuckets, options: ScriptingOptions) -> None:
    _trigger_phases(buckets, options, k.SERVER_DDL_TRIGGER, k.SERVER_DDL_TRIGGER_ENABLE, k.SERVER_DDL_TRIGGER_DISABLE)
    _trigger_phases(
        buckets, options, k.DATABASE_DDL_TRIGGER, k.DATABASE_DDL_TRIGGER_ENABLE, k.DATABASE_DDL_TRIGGER_DISABLE
    )


def _trigger_phases(buckets: UrnBuckets, options: ScriptingOptions, kind: str, enable: str, disable: str) -> None:
    triggers = buckets.get(kind)
    if not triggers or len(triggers) < 2:
        return
    if options.creates:
        buckets.set(enable, [t.with_phase(enable) for t in triggers])
    if options.drops:
        buckets.set(disable, [t.with_phase(disable) for t in triggers])
    buckets.convert(kind, k.PHASE_OBJECT)
    logger.debug(f"Split {len(triggers)} {kind} entries into separate enable/disable phases")


# ---------------------------------------------------------------------------
# Security principals
# ---------------------------------------------------------------------------

def split_server_principals(buckets: UrnBuckets, repository: EntityRepository) -> None:
    """Move certificate/key backed logins and the master objects they need into their own buckets."""
    logins = buckets.get(k.LOGIN)
    if not logins:
        return
    regular: List[Urn] = []
    key_backed: List[Urn] = []
    for login in logins:
        login_type = repository.resolve(login).login_type
        (key_backed if login_type in entities.KEY_BACKED_PRINCIPALS else regular).append(login)
    if not key_backed:
        return
    buckets.set(k.LOGIN, regular)
    buckets.set(k.CERTIFICATE_KEY_LOGIN, key_backed)
    _split_master_objects(buckets, k.SQL_ASSEMBLY, k.MASTER_ASSEMBLY)
    _split_master_objects(buckets, k.CERTIFICATE, k.MASTER_CERTIFICATE)
    _split_master_objects(buckets, k.ASYMMETRIC_KEY, k.MASTER_ASYMMETRIC_KEY)


def _split_master_objects(buckets: UrnBuckets, kind: str, master_kind: str) -> None:
    urns = buckets.get(kind)
    if not urns:
        return
    master = [u for u in urns if u.database_name == MASTER_DATABASE]
    if master:
        buckets.set(kind, [u for u in urns if u.database_name != MASTER_DATABASE])
        buckets.set(master_kind, master)


def split_database_principals(buckets: UrnBuckets, repository: EntityRepository) -> None:
    """Move certificate/key backed users into their own bucket, ahead of which go assemblies, certificates and keys."""
    users = buckets.get(k.USER)
    if not users:
        return
    regular: List[Urn] = []
    key_backed: List[Urn] = []
    for user in users:
        user_type = repository.resolve(user).user_type
        (key_backed if user_type in entities.KEY_BACKED_PRINCIPALS else regular).append(user)
    if not key_backed:
        return
    buckets.set(k.USER, regular)
    buckets.set(k.CERTIFICATE_KEY_USER, key_backed)
    buckets.move(k.SQL_ASSEMBLY, k.USER_ASSEMBLY)
    buckets.move(k.CERTIFICATE, k.USER_CERTIFICATE)
    buckets.move(k.ASYMMETRIC_KEY, k.USER_ASYMMETRIC_KEY)


def add_security_phases(buckets: UrnBuckets, options: ScriptingOptions) -> None:
    """Associations, ownership and permission passes for security objects.

    Not applied to drop scripts. Server associations and the database
    read-only phase are always emitted; the rest follow the options.
    """
    if options.is_drop:
        return

    special = _add_phase(buckets, k.SERVER_ASSOCIATION, SERVER_ASSOCIATION_KINDS, k.PHASE_ASSOCIATIONS)
    special = _add_phase(buckets, k.DATABASE_READONLY, (k.DATABASE,), k.PHASE_DATABASE_READONLY) or special

    if options.include_associations:
        _add_phase(buckets, k.DATABASE_ASSOCIATION, DATABASE_ASSOCIATION_KINDS, k.PHASE_ASSOCIATIONS)
        special = True

    if options.include_owner:
        _add_phase(buckets, k.SERVER_OWNERSHIP, SERVER_OWNERSHIP_KINDS, k.PHASE_OWNERSHIP)
        _add_phase(buckets, k.DATABASE_OWNERSHIP, DATABASE_OWNERSHIP_KINDS, k.PHASE_OWNERSHIP)
        special = True

    if options.include_permissions:
        _add_phase(buckets, k.SERVER_PERMISSION, SERVER_PERMISSION_KINDS, k.PHASE_PERMISSION)
        _add_phase(buckets, k.DATABASE_PERMISSION, DATABASE_PERMISSION_KINDS, k.PHASE_PERMISSION)
        special = True

    if special:
        for kind in SECURITY_OBJECT_KINDS:
            buckets.convert(kind, k.PHASE_OBJECT)

    buckets.convert(k.UNRESOLVED_ENTITY, k.PHASE_UNRESOLVED_ENTITY)


def _add_phase(buckets: UrnBuckets, bucket: str, source_kinds: Iterable[str], tag: str) -> bool:
    derived = buckets.tagged(source_kinds, tag)
    buckets.extend(bucket, derived)
    return bool(derived)


# ---------------------------------------------------------------------------
# Indexes and table-embedded constraints
# ---------------------------------------------------------------------------

def place_indexes(
    buckets: UrnBuckets,
    repository: EntityRepository,
    options: ScriptingOptions,
    embed: Embed,
) -> None:
    """Split the index bucket into sub-kind buckets, folding key indexes into their tables."""
    indexes = buckets.pop(k.INDEX)
    if not indexes:
        return

    tables = set(buckets.get(k.TABLE) or [])
    filestream_tables = set()
    if options.include_data and options.filestream_column:
        filestream_tables = {t for t in tables if repository.resolve(t).is_filestream_table}

    placed: Dict[str, List[Urn]] = {}
    for index in indexes:
        info = repository.resolve(index)
        owner = index.parent
        if options.include_data and owner in filestream_tables and info.is_key:
            embed(owner, index)
            continue

        if info.index_type not in INDEX_BUCKETS:
            raise ConfigurationError(
                f"Unknown index type '{info.index_type}' for {index}", urn=index, kind=info.index_type
            )
        bucket = INDEX_BUCKETS[info.index_type]

        if info.index_type == entities.CLUSTERED_INDEX:
            if info.is_key and owner in tables:
                embed(owner, index)
                continue
        elif info.index_type == entities.NONCLUSTERED_INDEX:
            # Memory-optimized indexes are part of the table definition
            if info.is_memory_optimized:
                continue
            if info.is_key and not options.include_data and owner in tables:
                embed(owner, index)
                continue

        if bucket is not None:
            placed.setdefault(bucket, []).append(index)

    for bucket, urns in placed.items():
        buckets.set(bucket, urns)


def embed_table_constraints(buckets: UrnBuckets, embed: Embed) -> None:
    """Fold foreign keys, checks and column defaults into the single table of the set."""
    tables = buckets.get(k.TABLE)
    if not tables or len(tables) != 1:
        return
    table = tables[0]
    for kind in (k.FOREIGN_KEY, k.CHECK):
        for urn in buckets.pop(kind):
            if urn.parent != table:
                raise ConfigurationError(f"{urn} does not belong to {table}", urn=urn, kind=kind)
            embed(table, urn)
    for urn in buckets.pop(k.DEFAULT_COLUMN):
        column = urn.parent
        if column is None or column.parent != table:
            raise ConfigurationError(f"{urn} does not belong to {table}", urn=urn, kind=k.DEFAULT_COLUMN)
        embed(table, urn)


def attach_foreign_keys(buckets: UrnBuckets, repository: EntityRepository) -> None:
    """Add every foreign key of the tables in the set, skipping file-table defined keys."""
    tables = buckets.get(k.TABLE)
    if not tables:
        return
    foreign_keys = buckets.get(k.FOREIGN_KEY) or []
    seen = set(foreign_keys)
    for table in tables:
        for fk in repository.resolve(table).foreign_keys:
            info = repository.get(fk)
            if info is not None and info.is_file_table_defined:
                continue
            if fk not in seen:
                seen.add(fk)
                foreign_keys.append(fk)
    buckets.set(k.FOREIGN_KEY, foreign_keys)


# ---------------------------------------------------------------------------
# Final sequence
# ---------------------------------------------------------------------------

def flatten(buckets: UrnBuckets) -> List[Urn]:
    """Concatenate buckets by rank, then place each clustered index right after its table.

    A clustered index whose table is not in the sequence goes to the end.
    """
    sequence: List[Urn] = []
    clustered: List[Urn] = []
    for key, urns in buckets.items():
        if key.kind == k.CLUSTERED_INDEX:
            clustered.extend(urns)
        else:
            sequence.extend(urns)

    orphans: List[Urn] = []
    for index in clustered:
        try:
            position = sequence.index(index.parent)
        except ValueError:
            orphans.append(index)
            continue
        sequence.insert(position + 1, index)
    return sequence + orphans
