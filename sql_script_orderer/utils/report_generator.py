from __future__ import annotations

import csv
import html
import json
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from openpyxl import Workbook
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from sql_script_orderer.core.kinds import DEFAULT_KIND_TABLE, KindTable
from sql_script_orderer.core.urn import Urn

COLUMNS = ["Position", "Kind", "Phase", "Identifier"]
TITLE = "Script Order Report"


def ordering_rows(
    urns: Iterable[Urn],
    kind_table: KindTable = DEFAULT_KIND_TABLE,
    embedded: Optional[Dict[Urn, List[Urn]]] = None,
) -> List[Dict[str, Any]]:
    """One row per script position; phase is empty for the entity's own definition."""
    rows: List[Dict[str, Any]] = []
    for position, urn in enumerate(urns, start=1):
        base = urn.base
        row = {
            "position": position,
            "kind": kind_table.kind_of(base),
            "phase": urn.phase or "",
            "urn": str(urn),
        }
        if embedded and urn in embedded:
            row["embedded"] = [str(child) for child in embedded[urn]]
        rows.append(row)
    return rows


def _values(row: Dict[str, Any]) -> List[str]:
    return [str(row["position"]), row["kind"], row["phase"], row["urn"]]


def export_csv(rows: List[Dict[str, Any]], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(COLUMNS)
        for row in rows:
            writer.writerow(_values(row))


def export_html(rows: List[Dict[str, Any]], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [
        "<!DOCTYPE html>",
        f"<html><head><meta charset='utf-8'><title>{TITLE}</title>",
        "<style>table{border-collapse:collapse;width:100%;}th,td{border:1px solid #ccc;padding:6px;}"
        " .phase{background:#f2f2f2;}</style>",
        "</head><body>",
        f"<h2>{TITLE}</h2>",
        "<table><tr>" + "".join(f"<th>{c}</th>" for c in COLUMNS) + "</tr>",
    ]
    for row in rows:
        css = " class='phase'" if row["phase"] else ""
        cells = "".join(f"<td>{html.escape(v)}</td>" for v in _values(row))
        lines.append(f"<tr{css}>{cells}</tr>")
    lines.append("</table></body></html>")

    path.write_text("\n".join(lines), encoding="utf-8")


def export_json(rows: List[Dict[str, Any]], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(rows, indent=2, default=str), encoding="utf-8")


def export_excel(rows: List[Dict[str, Any]], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    wb = Workbook()
    ws = wb.active
    ws.title = "Order"
    ws.append(COLUMNS)
    for row in rows:
        ws.append([row["position"], row["kind"], row["phase"], row["urn"]])
    wb.save(path)


def export_pdf(rows: List[Dict[str, Any]], path: Path) -> None:
    """Export the ordering to a PDF with a title and one table.

    Long identifiers are wrapped in paragraphs so the table fits a
    landscape A4 page.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    doc = SimpleDocTemplate(str(path), pagesize=landscape(A4))
    styles = getSampleStyleSheet()
    cell_style = styles["BodyText"]
    cell_style.fontSize = 7

    elements: list[Any] = [Paragraph(TITLE, styles["Heading1"]), Spacer(1, 12)]

    data: list[list[Any]] = [COLUMNS]
    for row in rows:
        data.append([
            str(row["position"]),
            row["kind"],
            row["phase"],
            Paragraph(html.escape(row["urn"]), cell_style),
        ])

    table = Table(data, repeatRows=1, colWidths=[50, 120, 90, 500])
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
                ("ALIGN", (0, 0), (-1, -1), "LEFT"),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, 0), 10),
                ("FONTSIZE", (0, 1), (-1, -1), 8),
            ]
        )
    )

    elements.append(table)
    doc.build(elements)


EXPORTERS: Dict[str, Callable[[List[Dict[str, Any]], Path], None]] = {
    ".csv": export_csv,
    ".html": export_html,
    ".htm": export_html,
    ".json": export_json,
    ".xlsx": export_excel,
    ".pdf": export_pdf,
}


def export_report(rows: List[Dict[str, Any]], path: Path) -> None:
    """Export by file extension."""
    exporter = EXPORTERS.get(path.suffix.lower())
    if exporter is None:
        raise ValueError(f"Unsupported report format: {path.suffix or path.name}")
    exporter(rows, path)
