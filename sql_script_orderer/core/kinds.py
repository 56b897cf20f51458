"""Kind table: canonical creation order of entity kinds and derived phase buckets.

Ranks express "scripted no earlier than": a bucket with a lower rank is always
emitted before a bucket with a higher rank. The table is immutable and is passed
into the orderer explicitly, so every ordering call sees the same ranks.
"""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from sql_script_orderer.core.exceptions import ConfigurationError
from sql_script_orderer.core.urn import Urn

KIND_TABLE_VERSION = 1

# Phase tags appended as "<urn>/<tag>/Special"
PHASE_DATA = "Data"
PHASE_OBJECT = "Object"
PHASE_ASSOCIATIONS = "Associations"
PHASE_OWNERSHIP = "Ownership"
PHASE_PERMISSION = "Permission"
PHASE_DATABASE_READONLY = "databasereadonly"
PHASE_UNRESOLVED_ENTITY = "UnresolvedEntity"

# Base kinds (urn types, lower-cased and disambiguated by parent where needed)
SERVER = "server"
DATABASE = "database"
LOGIN = "login"
USER = "user"
APPLICATION_ROLE = "applicationrole"
SERVER_ROLE = "roleserver"
DATABASE_ROLE = "roledatabase"
SQL_ASSEMBLY = "sqlassembly"
CERTIFICATE = "certificate"
ASYMMETRIC_KEY = "asymmetrickey"
TABLE = "table"
VIEW = "view"
INDEX = "index"
FOREIGN_KEY = "foreignkey"
CHECK = "check"
DEFAULT_COLUMN = "defaultcolumn"
USER_DEFINED_FUNCTION = "userdefinedfunction"
STORED_PROCEDURE = "storedprocedure"
UNRESOLVED_ENTITY = "unresolvedentity"
SERVER_DDL_TRIGGER = "ddltriggerserver"
DATABASE_DDL_TRIGGER = "ddltriggerdatabase"

# Derived buckets
CERTIFICATE_KEY_LOGIN = "certificatekeylogin"
CERTIFICATE_KEY_USER = "certificatekeyuser"
MASTER_ASSEMBLY = "masterassembly"
MASTER_CERTIFICATE = "mastercertificate"
MASTER_ASYMMETRIC_KEY = "masterasymmetrickey"
USER_ASSEMBLY = "userassembly"
USER_CERTIFICATE = "usercertificate"
USER_ASYMMETRIC_KEY = "userasymmetrickey"
SERVER_ASSOCIATION = "serverassociation"
SERVER_OWNERSHIP = "serverownership"
SERVER_PERMISSION = "serverpermission"
DATABASE_ASSOCIATION = "databaseassociation"
DATABASE_OWNERSHIP = "databaseownership"
DATABASE_PERMISSION = "databasepermission"
DATABASE_READONLY = "databasereadonly"
DATA = "data"
SCALAR_UDF = "scalarudf"
TABLE_VIEW_UDF = "tableviewudf"
CREATING_UDF = "creatingudf"
CREATING_TABLE = "creatingtable"
CREATING_VIEW = "creatingview"
CREATING_SPROC = "creatingsproc"
NON_SCHEMA_BOUND_SPROC = "nonschemaboundsproc"
CLUSTERED_INDEX = "clusteredindex"
NONCLUSTERED_INDEX = "nonclusteredindex"
COLUMNSTORE_INDEX = "columnstoreindex"
CLUSTERED_COLUMNSTORE_INDEX = "clusteredcolumnstoreindex"
PRIMARY_XML_INDEX = "primaryxmlindex"
SECONDARY_XML_INDEX = "secondaryxmlindex"
SELECTIVE_XML_INDEX = "selectivexmlindex"
SECONDARY_SELECTIVE_XML_INDEX = "secondaryselectivexmlindex"
SPATIAL_INDEX = "spatialindex"
VECTOR_INDEX = "vectorindex"
JSON_INDEX = "jsonindex"
SERVER_DDL_TRIGGER_ENABLE = "ddltriggerserverenable"
SERVER_DDL_TRIGGER_DISABLE = "ddltriggerserverdisable"
DATABASE_DDL_TRIGGER_ENABLE = "ddltriggerdatabaseenable"
DATABASE_DDL_TRIGGER_DISABLE = "ddltriggerdatabasedisable"

# Urn types whose kind depends on the parent type
_PARENT_QUALIFIED = ("default", "ddltrigger", "role")

_RANKS: Tuple[Tuple[str, int], ...] = (
    (UNRESOLVED_ENTITY, 0),
    (SERVER, 1),
    ("settings", 2),
    ("oledbprovidersettings", 3),
    ("useroptions", 4),
    ("filestreamsettings", 5),
    ("fulltextservice", 6),
    ("cryptographicprovider", 11),
    ("credential", 12),
    (DATABASE, 13),
    ("databasescopedcredential", 14),
    (LOGIN, 15),
    (MASTER_ASSEMBLY, 16),
    (MASTER_CERTIFICATE, 17),
    (MASTER_ASYMMETRIC_KEY, 18),
    (CERTIFICATE_KEY_LOGIN, 19),
    (SERVER_ROLE, 20),
    (SERVER_ASSOCIATION, 21),
    (SERVER_OWNERSHIP, 22),
    (SERVER_PERMISSION, 23),
    ("linkedserver", 24),
    ("audit", 31),
    ("userdefinedmessage", 32),
    ("httpendpoint", 33),
    ("endpoint", 34),
    ("databaseencryptionkey", 41),
    ("masterkey", 42),
    (APPLICATION_ROLE, 43),
    (USER, 44),
    (USER_ASSEMBLY, 45),
    (USER_CERTIFICATE, 46),
    (USER_ASYMMETRIC_KEY, 47),
    (CERTIFICATE_KEY_USER, 48),
    (DATABASE_ROLE, 49),
    (DATABASE_ASSOCIATION, 50),
    (DATABASE_OWNERSHIP, 51),
    (DATABASE_PERMISSION, 52),
    (SQL_ASSEMBLY, 61),
    ("externallanguage", 62),
    ("externallibrary", 63),
    (ASYMMETRIC_KEY, 64),
    (CERTIFICATE, 65),
    ("symmetrickey", 66),
    ("schema", 67),
    ("defaultdatabase", 68),
    ("fulltextcatalog", 69),
    ("fulltextstoplist", 70),
    ("searchpropertylist", 71),
    ("searchproperty", 72),
    ("partitionfunction", 73),
    ("partitionscheme", 74),
    ("rule", 75),
    ("xmlschemacollection", 76),
    ("userdefineddatatype", 77),
    ("userdefinedtype", 78),
    ("sequence", 79),
    ("userdefinedtabletype", 80),
    ("userdefinedaggregate", 81),
    (STORED_PROCEDURE, 82),
    ("servicebroker", 83),
    ("messagetype", 84),
    ("servicecontract", 85),
    ("servicequeue", 86),
    ("brokerservice", 87),
    ("serviceroute", 88),
    ("remoteservicebinding", 89),
    ("brokerpriority", 90),
    ("synonym", 91),
    (SCALAR_UDF, 101),
    ("regulartable", 102),
    (USER_DEFINED_FUNCTION, 103),
    ("externaldatasource", 104),
    ("externalfileformat", 105),
    ("externalstream", 106),
    ("externalstreamingjob", 107),
    ("columnmasterkey", 108),
    ("columnencryptionkey", 109),
    ("columnencryptionkeyvalue", 110),
    (TABLE, 111),
    (VIEW, 112),
    (TABLE_VIEW_UDF, 113),
    (CREATING_UDF, 114),
    (CREATING_TABLE, 115),
    (CREATING_VIEW, 116),
    ("securitypolicy", 117),
    ("securitypredicate", 118),
    (CLUSTERED_INDEX, 120),
    (DATA, 121),
    (NONCLUSTERED_INDEX, 122),
    (COLUMNSTORE_INDEX, 123),
    (CLUSTERED_COLUMNSTORE_INDEX, 124),
    (PRIMARY_XML_INDEX, 125),
    (SECONDARY_XML_INDEX, 126),
    (SELECTIVE_XML_INDEX, 127),
    (SECONDARY_SELECTIVE_XML_INDEX, 128),
    (INDEX, 129),
    ("fulltextindex", 130),
    (DEFAULT_COLUMN, 131),
    (FOREIGN_KEY, 132),
    (CHECK, 133),
    (CREATING_SPROC, 134),
    (NON_SCHEMA_BOUND_SPROC, 135),
    ("trigger", 136),
    ("statistic", 137),
    ("planguide", 140),
    ("databaseauditspecification", 141),
    (DATABASE_DDL_TRIGGER, 142),
    (DATABASE_DDL_TRIGGER_ENABLE, 143),
    (DATABASE_DDL_TRIGGER_DISABLE, 144),
    ("extendedproperty", 145),
    ("resourcepool", 160),
    ("externalresourcepool", 161),
    ("workloadgroup", 162),
    ("workloadmanagementworkloadclassifier", 163),
    ("workloadmanagementworkloadgroup", 164),
    ("resourcegovernor", 165),
    ("mail", 170),
    ("mailprofile", 171),
    ("mailaccount", 172),
    ("mailserver", 173),
    ("configurationvalue", 180),
    ("job", 181),
    ("step", 182),
    ("operator", 183),
    ("operatorcategory", 184),
    ("jobcategory", 185),
    ("alertcategory", 186),
    ("schedule", 187),
    ("targetservergroup", 188),
    ("alert", 189),
    ("backupdevice", 190),
    ("proxyaccount", 191),
    ("jobserver", 192),
    ("alertsystem", 193),
    ("serverauditspecification", 250),
    (SERVER_DDL_TRIGGER, 251),
    (SERVER_DDL_TRIGGER_ENABLE, 252),
    (SERVER_DDL_TRIGGER_DISABLE, 253),
    ("availabilitygroup", 260),
    ("availabilityreplica", 261),
    ("availabilitydatabase", 262),
    ("availabilitygrouplistener", 263),
    ("availabilitygrouplisteneripaddress", 264),
    ("querystoreoptions", 265),
    ("databasescopedconfiguration", 266),
    ("resumableindex", 267),
    ("edgeconstraint", 268),
    (SPATIAL_INDEX, 269),
    (DATABASE_READONLY, 270),
    (VECTOR_INDEX, 271),
    (JSON_INDEX, 272),
)

KIND_RANKS: Mapping[str, int] = MappingProxyType(dict(_RANKS))


@dataclass(frozen=True, order=True)
class OrderingKey:
    """Bucket key; sorts by rank, then kind name."""

    rank: int
    kind: str

    def __str__(self) -> str:
        return self.kind


def unique_type(urn_type: str, parent_type: Optional[str] = None) -> str:
    """Lower-cased kind of a urn type, qualified by the parent type where ambiguous."""
    kind = urn_type.lower()
    if kind in _PARENT_QUALIFIED:
        return kind + (parent_type or "").lower()
    return kind


class KindTable:
    """Immutable kind -> rank table with lookups that never fall back to a default."""

    def __init__(self, ranks: Optional[Mapping[str, int]] = None, version: int = KIND_TABLE_VERSION) -> None:
        source = KIND_RANKS if ranks is None else ranks
        self._ranks: Mapping[str, int] = MappingProxyType({k.lower(): v for k, v in source.items()})
        self.version = version

    def __contains__(self, kind: str) -> bool:
        return kind.lower() in self._ranks

    def key(self, kind: str) -> OrderingKey:
        kind = kind.lower()
        rank = self._ranks.get(kind)
        if rank is None:
            raise ConfigurationError(f"No creation order is defined for kind '{kind}'", kind=kind)
        return OrderingKey(rank, kind)

    def kind_of(self, urn: Urn) -> str:
        parent = urn.parent
        return unique_type(urn.type, parent.type if parent is not None else None)

    def classify(self, urn: Urn) -> OrderingKey:
        """Ordering key for an identifier's base kind."""
        kind = self.kind_of(urn)
        if kind not in self:
            raise ConfigurationError(
                f"No creation order is defined for kind '{kind}' of {urn}", urn=urn, kind=kind
            )
        return self.key(kind)


DEFAULT_KIND_TABLE = KindTable()
