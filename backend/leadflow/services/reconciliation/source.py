from __future__ import annotations

import csv
import io
from pathlib import Path


class SourceRow(dict):
    """A parsed row that remembers the file line it was read from."""

    def __init__(self, data, line_number: int | None = None):
        super().__init__(data)
        self.line_number = line_number


def detect_delimiter(text: str) -> str:
    first_line = text.split("\n", 1)[0]
    return "\t" if first_line.count("\t") > first_line.count(",") else ","


def read_rows(content: bytes | str) -> list[SourceRow]:
    """Parse an uploaded CSV or TSV into header-keyed rows, skipping blank lines."""
    if isinstance(content, bytes):
        text = content.decode("utf-8-sig", errors="replace")
    else:
        text = content.lstrip("\ufeff")
    if not text.strip():
        return []

    reader = csv.DictReader(io.StringIO(text), delimiter=detect_delimiter(text))
    rows: list[SourceRow] = []
    for raw in reader:
        row = {
            (key or "").strip(): (value or "").strip()
            for key, value in raw.items()
            if key is not None and not isinstance(value, list)
        }
        if any(row.values()):
            rows.append(SourceRow(row, reader.line_num))
    return rows


def read_rows_from_path(path: str | Path) -> list[SourceRow]:
    return read_rows(Path(path).read_bytes())
