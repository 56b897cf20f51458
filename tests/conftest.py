"""Shared builders for identifiers and entity metadata."""
from __future__ import annotations

import os
import sys

# Ensure project root is on sys.path so "sql_script_orderer" is importable
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest

from sql_script_orderer.core.entities import EntityInfo, EntityRepository
from sql_script_orderer.core.urn import Urn

SERVER = "Server[@Name='SRV']"
DATABASE = f"{SERVER}/Database[@Name='db']"


def server_urn() -> Urn:
    return Urn(SERVER)


def database_urn(name: str = "db") -> Urn:
    return Urn(f"{SERVER}/Database[@Name='{name}']")


def table_urn(name: str, schema: str = "dbo", database: str = "db") -> Urn:
    return Urn(f"{SERVER}/Database[@Name='{database}']/Table[@Name='{name}' and @Schema='{schema}']")


def schema_object_urn(kind: str, name: str, schema: str = "dbo", database: str = "db") -> Urn:
    return Urn(f"{SERVER}/Database[@Name='{database}']/{kind}[@Name='{name}' and @Schema='{schema}']")


def database_child_urn(kind: str, name: str, database: str = "db") -> Urn:
    return Urn(f"{SERVER}/Database[@Name='{database}']/{kind}[@Name='{name}']")


def server_child_urn(kind: str, name: str) -> Urn:
    return Urn(f"{SERVER}/{kind}[@Name='{name}']")


def index_urn(table: Urn, name: str) -> Urn:
    return Urn(f"{table}/Index[@Name='{name}']")


def table_child_urn(table: Urn, kind: str, name: str) -> Urn:
    return Urn(f"{table}/{kind}[@Name='{name}']")


class RepositoryBuilder:
    """Adds EntityInfo records with sequential object ids."""

    def __init__(self) -> None:
        self.repository = EntityRepository()
        self._next_id = 100

    def add(self, urn: Urn, **fields) -> Urn:
        if "object_id" not in fields:
            fields["object_id"] = self._next_id
            self._next_id += 1
        self.repository.add(EntityInfo(urn, **fields))
        return urn

    def id_of(self, urn: Urn) -> int:
        return self.repository.resolve(urn).object_id


@pytest.fixture
def builder() -> RepositoryBuilder:
    return RepositoryBuilder()
