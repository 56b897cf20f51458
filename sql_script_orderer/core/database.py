"""Live catalog access for SQL Server.
Supports SQL login, Windows integrated, and Microsoft Entra (interactive, token cached via msal).
pyodbc is imported when a connection opens, so ordering against a snapshot
works on hosts without the ODBC driver manager.
"""
from __future__ import annotations

import os
import re
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Sequence

import msal

from sql_script_orderer.utils.logger import get_logger

logger = get_logger(__name__)

# SQL_COPT_SS_ACCESS_TOKEN
ACCESS_TOKEN_ATTRIBUTE = 1256


class DatabaseConnection:
    """Catalog access over pyodbc. Each call opens one autocommit session."""

    def __init__(
        self,
        server: str,
        database: str,
        auth_type: str,
        username: str | None = None,
        password: str | None = None,
        encrypt: bool = True,
        trust_cert: bool = False,
        driver: str = "ODBC Driver 18 for SQL Server",
        timeout: int = 300,
    ) -> None:
        self.server = server
        self.database = database
        self.auth_type = auth_type.lower()
        self.username = username
        self.password = password
        self.encrypt = encrypt
        self.trust_cert = trust_cert
        self.driver = driver
        self.timeout = timeout
        self.client_id = "04b07795-8ddb-461a-bbee-02f9e1bf7b46"
        self.scope = ["https://database.windows.net/.default"]
        self.chrome_path = self._find_chrome()
        self.token_cache_path = Path.home() / ".sql_script_orderer_token_cache.bin"

        if self.auth_type not in ("sql", "windows", "entra"):
            raise ValueError(f"Unsupported authentication type: {auth_type}")

    def _conn_str(self, database: str | None = None) -> str:
        server = (self.server or "").strip()
        if not server:
            raise ValueError("Server name cannot be empty")
        if re.search(r'[;<>"\\]', server):
            raise ValueError(f"Invalid characters in server name: {server}")

        database = database or self.database
        if database and re.search(r'[;{}]', database):
            raise ValueError(f"Invalid characters in database name: {database}")

        # TCP avoids the Named Pipes fallback that fails against Azure SQL
        if not server.lower().startswith(("tcp:", "np:")):
            server = f"tcp:{server}"

        parts = [
            f"Driver={{{self.driver}}};",
            f"Server={server};",
        ]
        if database:
            parts.append(f"Database={database};")
        parts.append(f"Encrypt={'yes' if self.encrypt else 'no'};")
        parts.append(f"TrustServerCertificate={'yes' if self.trust_cert else 'no'};")

        # Entra tokens go through attrs_before, never the connection string
        if self.auth_type == "windows":
            parts.append("Trusted_Connection=yes;")
        elif self.auth_type == "sql":
            if self.username:
                parts.append(f"UID={self.username};")
            if self.password:
                parts.append(f"PWD={self.password};")
        return "".join(parts)

    @contextmanager
    def _connect(self, database: str | None = None, timeout: int | None = None) -> Iterator[Any]:
        import pyodbc

        kwargs: dict = {"timeout": timeout or self.timeout, "autocommit": True}
        if self.auth_type == "entra":
            kwargs["attrs_before"] = {ACCESS_TOKEN_ATTRIBUTE: self._acquire_token()}
        conn = pyodbc.connect(self._conn_str(database), **kwargs)
        try:
            yield conn
        finally:
            conn.close()

    def test_connection(self, timeout: int = 5) -> tuple[bool, str]:
        try:
            logger.info(f"Testing connection to {self.server}/{self.database} using {self.auth_type} auth")
            with self._connect(timeout=timeout):
                logger.info("Connection test succeeded")
                return True, "Connection succeeded"
        except Exception as exc:
            logger.error(f"Connection test failed: {exc}", exc_info=True)
            return False, str(exc)

    def execute_query(self, query: str, database: str | None = None) -> list[tuple]:
        with self._connect(database) as conn:
            cursor = conn.cursor()
            cursor.execute(query)
            return [tuple(row) for row in cursor.fetchall()]

    def run_query(self, query_template: str, ids: Sequence[int], database: str | None = None) -> list[tuple]:
        """Run an in-list query with ``{0}`` replaced by the comma separated ids."""
        if not ids:
            return []
        query = query_template.format(",".join(str(int(i)) for i in ids))
        logger.debug(f"Running in-list query over {len(ids)} ids in {database or self.database}")
        return [(int(a), int(b)) for a, b in self.execute_query(query, database)]

    def run_batched_query(self, statements: Sequence[str], database: str | None = None) -> list[tuple]:
        """Run statements in order on one session.

        Temp tables created by earlier statements stay visible to later ones.
        Rows come from the last statement that produced a result set.
        """
        rows: list[tuple] = []
        with self._connect(database) as conn:
            cursor = conn.cursor()
            for statement in statements:
                cursor.execute(statement)
                if cursor.description is not None:
                    rows = [tuple(row) for row in cursor.fetchall()]
        logger.debug(f"Batch of {len(statements)} statements returned {len(rows)} rows")
        return [(int(a), int(b)) for a, b in rows]

    def _acquire_token(self) -> bytes:
        cache = msal.SerializableTokenCache()
        if self.token_cache_path.exists():
            cache.deserialize(self.token_cache_path.read_text())

        app = msal.PublicClientApplication(
            self.client_id,
            authority="https://login.microsoftonline.com/common",
            token_cache=cache
        )

        if self.chrome_path:
            os.environ["BROWSER"] = str(self.chrome_path)

        accounts = app.get_accounts(username=self.username) if self.username else app.get_accounts()
        result = None
        if accounts:
            result = app.acquire_token_silent(self.scope, account=accounts[0])

        if not result:
            result = app.acquire_token_interactive(scopes=self.scope, login_hint=self.username)

        if cache.has_state_changed:
            self.token_cache_path.write_text(cache.serialize())

        if not result or "access_token" not in result:
            error_desc = result.get("error_description", "Unknown error") if result else "No result"
            raise RuntimeError(f"Token acquisition failed: {error_desc}")

        return encode_access_token(result["access_token"])

    @staticmethod
    def _find_chrome() -> Path | None:
        candidates = [
            Path(r"C:\Program Files\Google\Chrome\Application\chrome.exe"),
            Path(r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe"),
        ]
        for path in candidates:
            if path.exists():
                return path
        return None


def encode_access_token(token: str) -> bytes:
    """ACCESSTOKEN struct: little-endian DWORD length, then the UTF-16LE token."""
    token_utf16 = token.encode("utf-16-le")
    return len(token_utf16).to_bytes(4, byteorder="little") + token_utf16
