"""Scripting options and target server description."""
from __future__ import annotations

from dataclasses import dataclass
from enum import IntFlag
from typing import Any, Dict, Optional

from sql_script_orderer.core.exceptions import ConfigurationError


class ScriptBehavior(IntFlag):
    CREATE = 1
    DROP = 2
    DROP_AND_CREATE = CREATE | DROP
    CREATE_OR_ALTER = 4

    @classmethod
    def parse(cls, value: Any) -> "ScriptBehavior":
        if isinstance(value, ScriptBehavior):
            return value
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError as exc:
                raise ConfigurationError(f"Unknown script behavior: {value}", kind=str(value)) from exc
        name = str(value).strip().upper().replace("-", "_").replace(" ", "_")
        if name == "ALTER":
            name = "CREATE_OR_ALTER"
        try:
            return cls[name]
        except KeyError as exc:
            raise ConfigurationError(f"Unknown script behavior: {value}", kind=str(value)) from exc


@dataclass(frozen=True)
class ScriptingOptions:
    """Flags gating which phase rules fire."""

    include_ddl: bool = True
    include_data: bool = False
    include_associations: bool = False
    include_owner: bool = False
    include_permissions: bool = False
    behavior: ScriptBehavior = ScriptBehavior.CREATE
    filestream_column: bool = True

    @property
    def is_drop(self) -> bool:
        return self.behavior == ScriptBehavior.DROP

    @property
    def creates(self) -> bool:
        return bool(self.behavior & (ScriptBehavior.CREATE | ScriptBehavior.CREATE_OR_ALTER))

    @property
    def drops(self) -> bool:
        return bool(self.behavior & ScriptBehavior.DROP)

    def validate(self) -> "ScriptingOptions":
        if not isinstance(self.behavior, ScriptBehavior) or int(self.behavior) == 0:
            raise ConfigurationError(f"Unknown script behavior: {self.behavior}")
        if self.behavior & ScriptBehavior.CREATE_OR_ALTER and self.behavior & ScriptBehavior.DROP:
            raise ConfigurationError("Create-or-alter scripts cannot be combined with drop")
        if not self.include_ddl and not self.include_data:
            raise ConfigurationError("Nothing to script: both DDL and data are disabled")
        return self

    @classmethod
    def from_config(cls, config: Any) -> "ScriptingOptions":
        """Build options from the ``scripting`` section of a Config."""
        section: Dict[str, Any] = config.get_section("scripting") or {}
        return cls(
            include_ddl=bool(section.get("include_ddl", True)),
            include_data=bool(section.get("include_data", False)),
            include_associations=bool(section.get("include_associations", False)),
            include_owner=bool(section.get("include_owner", False)),
            include_permissions=bool(section.get("include_permissions", False)),
            behavior=ScriptBehavior.parse(section.get("behavior", "create")),
            filestream_column=bool(section.get("filestream_column", True)),
        ).validate()


STANDALONE = "Standalone"
SQL_AZURE_DATABASE = "SqlAzureDatabase"


@dataclass(frozen=True)
class ServerInfo:
    """What the orderer needs to know about the target server."""

    version_major: int = 16
    engine_type: str = STANDALONE
    is_design_mode: bool = False
    is_sql_dw: bool = False

    @property
    def supports_temporal(self) -> bool:
        if self.engine_type == SQL_AZURE_DATABASE:
            return self.version_major >= 12
        return self.version_major >= 13

    @property
    def batch_size(self) -> int:
        # 2005 and earlier have no multi-row VALUES; 2008+ allows 1000 rows per insert
        if self.is_sql_dw or self.version_major <= 9:
            return 1
        return 1000

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ServerInfo":
        data = data or {}
        return cls(
            version_major=int(data.get("version_major", 16)),
            engine_type=data.get("engine_type", STANDALONE),
            is_design_mode=bool(data.get("is_design_mode", False)),
            is_sql_dw=bool(data.get("is_sql_dw", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version_major": self.version_major,
            "engine_type": self.engine_type,
            "is_design_mode": self.is_design_mode,
            "is_sql_dw": self.is_sql_dw,
        }
