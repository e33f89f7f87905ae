"""
CSV rendering for the CRM export downloads.

Spreadsheet tools open these files directly, so every cell is quoted,
the text starts with a UTF-8 BOM and rows end with a bare "\\n".

Usage:
    from scripts.lib.csv_export import render_csv, SEGMENTED_COLUMNS

    body = render_csv(rows, SEGMENTED_COLUMNS)
"""
from __future__ import annotations

import csv
import io
from typing import Any, Dict, Iterable, List, Tuple

BOM = "\ufeff"

# (field, header) pairs in output order
CRM_COLUMNS: List[Tuple[str, str]] = [
    ("name", "Nome"),
    ("phone", "Telefone"),
    ("city", "Cidade"),
    ("course", "Curso"),
    ("stage", "Etapa do Funil"),
    ("registered_at", "Data de Cadastro"),
]

SEGMENTED_COLUMNS: List[Tuple[str, str]] = [("segment", "Aba")] + CRM_COLUMNS

POWER_USER_COLUMNS: List[Tuple[str, str]] = [
    ("name", "Nome"),
    ("phone", "Telefone"),
    ("city", "Cidade de Residência"),
    ("location_preference", "Local de Interesse"),
    ("course", "Curso"),
    ("stage", "Etapa do Funil"),
    ("favorites", "Favoritos"),
    ("sessions", "Sessões (7d)"),
]

TOP_USER_COLUMNS: List[Tuple[str, str]] = [
    ("name", "Nome"),
    ("phone", "Telefone"),
    ("city", "Cidade de Residência"),
    ("location_preference", "Local de Interesse"),
    ("messages", "Total de Mensagens"),
    ("stage", "Etapa do Funil"),
    ("course", "Curso"),
    ("favorites", "Favoritos"),
]


def _cell(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def render_csv(rows: Iterable[Dict[str, Any]], columns: List[Tuple[str, str]]) -> str:
    """Render rows in the given column order. Missing fields become empty cells."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow([header for _, header in columns])
    for row in rows:
        writer.writerow([_cell(row.get(key)) for key, _ in columns])
    return BOM + buffer.getvalue()


def segmented_rows(export: Dict[str, Any], segment_order: Iterable[str]) -> List[Dict[str, Any]]:
    """Flatten the per-segment tabs into one row list tagged with the segment name."""
    rows = []
    for segment in segment_order:
        for record in export.get(segment, []):
            rows.append({"segment": segment, **record})
    return rows
