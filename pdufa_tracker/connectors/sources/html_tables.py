"""Header-aware HTML table extraction shared by the table-based sources."""

from typing import Dict, Iterator, List, Sequence, Tuple

from bs4 import BeautifulSoup

REQUIRED_FIELDS = ("company", "drug", "date")


def _cell_text(cell) -> str:
    return " ".join(cell.get_text(" ", strip=True).split())


def _header_mapping(
    headers: List[str], fields: Dict[str, Tuple[str, ...]]
) -> Dict[str, int]:
    mapping: Dict[str, int] = {}
    for field, keywords in fields.items():
        for i, header in enumerate(headers):
            if i in mapping.values():
                continue
            if any(k in header for k in keywords):
                mapping[field] = i
                break
    return mapping


def iter_table_rows(
    soup: BeautifulSoup,
    fields: Dict[str, Tuple[str, ...]],
    positional: Sequence[str],
) -> Iterator[Dict[str, str]]:
    """Yield one ``{field: text}`` dict per data row of every table.

    Columns are located by matching header text against ``fields`` keywords.
    Tables without a usable header row fall back to the ``positional`` order.
    Rows missing company, drug or date text are skipped.
    """
    for table in soup.find_all("table"):
        rows = table.find_all("tr")
        if not rows:
            continue

        header_cells = rows[0].find_all("th")
        body = rows
        mapping: Dict[str, int] = {}
        if header_cells:
            headers = [_cell_text(c).lower() for c in header_cells]
            mapping = _header_mapping(headers, fields)
            body = rows[1:]
        if not all(f in mapping for f in REQUIRED_FIELDS):
            mapping = {field: i for i, field in enumerate(positional)}

        for row in body:
            cells = row.find_all("td")
            if not cells:
                continue
            values = {
                field: _cell_text(cells[i]) if i < len(cells) else ""
                for field, i in mapping.items()
            }
            if all(values.get(f) for f in REQUIRED_FIELDS):
                yield values
