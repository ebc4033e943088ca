"""
Worksheet CSV Import & Export for the Daily Food Cost Worksheet

Import: CSV text (CSV_HEADERS column order, header row optional) -> derived line items
Export: line items -> CSV text with input and derived columns
"""

import csv
import logging
from io import StringIO
from typing import Dict, List, Optional, Sequence

import pandas as pd

from config import CALCULATION_PROFILE, CSV_FIELDS, CSV_HEADERS, EXPORT_COLUMNS
from calculations import coerce_number, derive_line_items
from utils import new_item_id

logger = logging.getLogger(__name__)

# utf-8-sig first so Excel's BOM does not end up in the first header cell
ENCODINGS = ['utf-8-sig', 'utf-8', 'cp1256', 'latin-1']


def read_uploaded_text(uploaded_file) -> str:
    """
    Read an uploaded file (Streamlit UploadedFile or any file-like object) as text.

    Tries several encodings; the file position is reset afterwards so the
    upload can be read again.
    """
    content = uploaded_file.read()
    uploaded_file.seek(0)

    if isinstance(content, str):
        return content

    for encoding in ENCODINGS:
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue

    return content.decode('utf-8', errors='replace')


def sanitize_row(values: Sequence) -> Dict:
    """
    Map one CSV row onto a line item input.

    Cells are taken by position (see CSV_HEADERS). Labels are trimmed,
    numbers coerced (invalid -> 0), and each row gets a new id.
    """
    cells = [('' if value is None else str(value)) for value in values]
    cells += [''] * (len(CSV_FIELDS) - len(cells))

    item = {'id': new_item_id()}
    for field, cell in zip(CSV_FIELDS, cells):
        if field in ('category', 'menu_item'):
            item[field] = cell.strip()
        else:
            item[field] = coerce_number(cell)
    return item


def _is_header_row(row: Sequence) -> bool:
    """True when the row starts with CSV_HEADERS (case-insensitive)"""
    if len(row) < len(CSV_HEADERS):
        return False
    return all(
        str(cell).strip().lower() == header.lower()
        for cell, header in zip(row, CSV_HEADERS)
    )


def parse_csv(text: str, settings: Optional[Dict] = None,
              profile: str = CALCULATION_PROFILE) -> List[Dict]:
    """
    Parse worksheet CSV text into derived line items.

    Cells are mapped by position; short rows are padded and extra cells
    ignored. Rows that are entirely blank are skipped. The first row is treated as a
    header when it matches CSV_HEADERS, so exported files (which carry extra
    derived columns) can be imported again.

    Args:
        text: CSV content
        settings: Day settings applied while deriving
        profile: Calculation profile

    Returns:
        List of derived line items (empty if the file has no rows)

    Raises:
        pandas.errors.ParserError: if the CSV is structurally malformed
    """
    # Rows may differ in length; pandas needs the widest one up front
    width = max((len(row) for row in csv.reader(StringIO(text))), default=0)
    if width == 0:
        return []

    df = pd.read_csv(
        StringIO(text),
        header=None,
        names=range(width),
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
    )

    rows = df.fillna('').values.tolist()
    rows = [row for row in rows if any(str(cell).strip() for cell in row)]

    if rows and _is_header_row(rows[0]):
        rows = rows[1:]

    items = [sanitize_row(row) for row in rows]
    logger.info(f"Parsed {len(items)} line items from CSV")

    return derive_line_items(items, settings, profile)


def export_csv(items: List[Dict], profile: str = CALCULATION_PROFILE) -> str:
    """
    Export line items as CSV text.

    Columns follow EXPORT_COLUMNS for the profile. Values are written as
    stored (no rounding); missing fields are left blank.
    """
    columns = EXPORT_COLUMNS[profile]
    headers = [header for header, _ in columns]

    records = [
        {header: item.get(field, '') for header, field in columns}
        for item in items
    ]
    df = pd.DataFrame(records, columns=headers)

    return df.to_csv(index=False, lineterminator='\n')


def export_filename(day_date) -> str:
    """Download name for a day's export, e.g. daily-food-cost-2024-01-01.csv"""
    day = day_date.isoformat() if hasattr(day_date, 'isoformat') else str(day_date)
    return f"daily-food-cost-{day}.csv"
