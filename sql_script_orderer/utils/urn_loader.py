from __future__ import annotations

from pathlib import Path
from typing import List

from sql_script_orderer.core.exceptions import ConfigurationError
from sql_script_orderer.core.urn import Urn


def load_urn_file(path: str | Path) -> List[Urn]:
    """Load identifiers from a text file, one per line.

    Blank lines and lines starting with ``#`` are skipped. Malformed
    identifiers raise ConfigurationError naming the line.
    """
    p = Path(path)
    if not p.is_file():
        raise ValueError(f"Identifier file not found: {p}")

    try:
        text = p.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        text = p.read_text(encoding="latin-1", errors="ignore")

    urns: List[Urn] = []
    for line_no, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            urns.append(Urn(line))
        except ConfigurationError as exc:
            raise ConfigurationError(f"{p}:{line_no}: {exc.message}", urn=line) from exc
    return urns
