"""
imm_platform/parser.py
=======================
Multi-format firm-year record parser. Handles:
  - Excel (.xlsx, .xls) – first sheet with a recognisable header row wins
  - CSV (.csv)
  - HTML tables (spreadsheet exports saved as .htm/.html or HTML-in-.xls)
  - ZIP bundles of the above

Expected columns (aliases allowed): name, year, profit, sales, market_value.
"""
from __future__ import annotations
import io
import logging
import math
import re
import zipfile
from typing import Dict, Iterable, List, Optional, Tuple, Any

import pandas as pd
from bs4 import BeautifulSoup

from .types import FinancialRecord, IngestOptions, IngestReport

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "year", "profit", "sales", "market_value")

COLUMN_ALIASES: Dict[str, str] = {
    "name": "name",
    "firm": "name",
    "firm name": "name",
    "company": "name",
    "company name": "name",
    "year": "year",
    "fiscal year": "year",
    "fy": "year",
    "profit": "profit",
    "net profit": "profit",
    "net income": "profit",
    "profit after tax": "profit",
    "pat": "profit",
    "sales": "sales",
    "net sales": "sales",
    "revenue": "sales",
    "revenues": "sales",
    "turnover": "sales",
    "market value": "market_value",
    "market_value": "market_value",
    "marketvalue": "market_value",
    "market cap": "market_value",
    "market capitalization": "market_value",
    "market capitalisation": "market_value",
    "mv": "market_value",
}

SUPPORTED_EXTENSIONS = (".xlsx", ".xls", ".csv", ".html", ".htm")


# ─── Value Normalisation ──────────────────────────────────────────────────────

def to_numeric(val: Any) -> Optional[float]:
    """Convert diverse string formats to float."""
    if val is None or val == "":
        return None
    if isinstance(val, bool):
        return None
    if isinstance(val, (int, float)):
        return float(val) if math.isfinite(val) else None
    s = str(val).strip()
    # Parenthetical negatives: (1234) → -1234
    if s.startswith('(') and s.endswith(')'):
        s = '-' + s[1:-1]
    s = (s.replace(',', '').replace('$', '').replace('€', '').replace('£', '')
         .replace('₹', '').replace('\xa0', '').replace(' ', ''))
    if s.lower() in ('', '-', '--', 'n/a', 'na', 'nan', 'none'):
        return None
    if s.lower() == 'nil':
        return 0.0
    try:
        num = float(s)
    except ValueError:
        return None
    # inf / nan spellings parse as floats but are not usable amounts
    return num if math.isfinite(num) else None


def to_year(val: Any) -> Optional[int]:
    """Parse 2019, 2019.0, '2019', 'FY2019', 'FY 2019' → 2019."""
    if val is None:
        return None
    if isinstance(val, bool):
        return None
    if isinstance(val, (int, float)):
        if isinstance(val, float) and (math.isnan(val) or not val.is_integer()):
            return None
        return int(val)
    s = str(val).strip()
    m = re.fullmatch(r'(?:FY\s*)?(\d{4})(?:\.0+)?', s, re.IGNORECASE)
    if m:
        return int(m.group(1))
    return None


def _clean_header(value: Any) -> str:
    s = str(value if value is not None else "").strip().lower()
    s = re.sub(r"[\s_]+", " ", s)
    return s


def resolve_columns(headers: Iterable[Any], aliases: Optional[Dict[str, str]] = None) -> Dict[str, int]:
    """Map canonical field → column index. The first matching column wins."""
    alias_map = {_clean_header(k): v for k, v in (aliases or COLUMN_ALIASES).items()}
    resolved: Dict[str, int] = {}
    for idx, header in enumerate(headers):
        target = alias_map.get(_clean_header(header))
        if target and target not in resolved:
            resolved[target] = idx
    return resolved


# ─── Table → Records ──────────────────────────────────────────────────────────

def _find_header_row(rows: List[List[Any]], aliases: Optional[Dict[str, str]]) -> Tuple[int, Dict[str, int]]:
    """Scan the first rows for the one resolving the most required fields."""
    best_idx, best_cols = -1, {}
    for i, row in enumerate(rows[:20]):
        cols = resolve_columns(row, aliases)
        if len(cols) > len(best_cols):
            best_idx, best_cols = i, cols
    return best_idx, best_cols


def records_from_rows(
    rows: List[List[Any]], source: str, options: Optional[IngestOptions] = None
) -> Tuple[List[FinancialRecord], IngestReport]:
    """Convert a raw cell grid (header row somewhere near the top) into records."""
    opts = options or IngestOptions()
    report = IngestReport(valid=True)
    records: List[FinancialRecord] = []

    header_idx, cols = _find_header_row(rows, opts.column_aliases)
    missing = [f for f in REQUIRED_FIELDS if f not in cols]
    if header_idx < 0 or missing:
        report.valid = False
        report.errors.append(f"{source}: missing required columns: {', '.join(missing)}")
        return records, report

    skipped = 0
    for offset, row in enumerate(rows[header_idx + 1:], start=header_idx + 2):
        cells = {f: (row[i] if i < len(row) else None) for f, i in cols.items()}
        if all(c is None or str(c).strip() == "" or str(c) == "nan" for c in cells.values()):
            continue

        name = str(cells["name"]).strip() if cells["name"] is not None else ""
        if name.lower() == "nan":
            name = ""
        year = to_year(cells["year"])
        profit = to_numeric(cells["profit"])
        sales = to_numeric(cells["sales"])
        market_value = to_numeric(cells["market_value"])

        bad = [f for f, v in (("name", name or None), ("year", year), ("profit", profit),
                              ("sales", sales), ("market_value", market_value)) if v is None]
        if bad:
            skipped += 1
            msg = f"{source} row {offset}: invalid {', '.join(bad)}"
            if opts.strict_mode:
                report.errors.append(msg)
            else:
                report.warnings.append(msg)
            logger.warning(msg)
            continue

        records.append(FinancialRecord(
            name=name, year=year, profit=profit, sales=sales, market_value=market_value,
        ))

    if opts.strict_mode and report.errors:
        report.valid = False
    report.stats = {
        "rows": len(records),
        "skipped": skipped,
        "firms": len({r.name for r in records}),
    }
    return records, report


def _df_rows(df: pd.DataFrame) -> List[List[Any]]:
    df = df.astype(object).where(pd.notna(df), None)
    return [list(r) for r in df.itertuples(index=False, name=None)]


# ─── Format-specific Readers ──────────────────────────────────────────────────

def _decode_text(content: bytes) -> str:
    """Decode bytes with fallbacks for legacy exports (utf-16/cp1252/latin1)."""
    encodings = ["utf-8-sig"]
    # UTF-16 only when the payload says so; otherwise any even-length byte string "decodes"
    if content.startswith((b"\xff\xfe", b"\xfe\xff")) or b"\x00" in content:
        encodings.append("utf-16")
    encodings += ["cp1252", "latin1"]
    for enc in encodings:
        try:
            text = content.decode(enc)
            if text:
                return text
        except UnicodeDecodeError:
            continue
    return content.decode("utf-8", errors="replace")


def _looks_like_html(content: bytes) -> bool:
    """Heuristic detection for HTML payloads saved with .xls extension."""
    head = content[:4096]
    low = head.lower().replace(b"\x00", b"")
    return any(tok in low for tok in (b"<html", b"<table", b"<!doctype html", b"<tr", b"<td"))


def _html_tables(content: bytes) -> List[List[List[Any]]]:
    html = _decode_text(content)
    if not html:
        return []
    soup = BeautifulSoup(html, 'lxml')
    tables = []
    for table in soup.find_all('table'):
        rows = []
        for tr in table.find_all('tr'):
            rows.append([' '.join(td.get_text().split()) for td in tr.find_all(['td', 'th'])])
        if rows:
            tables.append(rows)
    return tables


def _excel_tables(file_bytes: bytes, filename: str) -> List[List[List[Any]]]:
    engine = 'openpyxl' if filename.lower().endswith('.xlsx') else 'xlrd'
    xl = pd.ExcelFile(io.BytesIO(file_bytes), engine=engine)
    return [_df_rows(xl.parse(sheet, header=None, dtype=str)) for sheet in xl.sheet_names]


def _csv_tables(file_bytes: bytes) -> List[List[List[Any]]]:
    df = pd.read_csv(io.StringIO(_decode_text(file_bytes)), header=None, dtype=str,
                     sep=None, engine='python')
    return [_df_rows(df)]


# ─── Main Parse Entry Point ───────────────────────────────────────────────────

def parse_file(
    file_bytes: bytes, filename: str, options: Optional[IngestOptions] = None
) -> Tuple[List[FinancialRecord], IngestReport]:
    """
    Parse uploaded file bytes into FinancialRecords.
    Returns (records, report). Never raises for unreadable content; the report
    carries the error instead.
    """
    fn_lower = filename.lower()
    try:
        if fn_lower.endswith(('.htm', '.html')) or (fn_lower.endswith('.xls') and _looks_like_html(file_bytes)):
            tables = _html_tables(file_bytes)
        elif fn_lower.endswith('.csv'):
            tables = _csv_tables(file_bytes)
        elif fn_lower.endswith(('.xlsx', '.xls')):
            tables = _excel_tables(file_bytes, filename)
        else:
            return [], IngestReport(valid=False, errors=[f"{filename}: unsupported file type"])
    except Exception as e:
        logger.warning("Could not read %s: %s", filename, e)
        return [], IngestReport(valid=False, errors=[f"{filename}: could not read file ({e})"])

    # First table with a usable header wins (multi-sheet workbooks, multi-table HTML)
    last_report = IngestReport(valid=False, errors=[f"{filename}: no tables found"])
    for rows in tables:
        records, report = records_from_rows(rows, filename, options)
        if report.valid or report.stats:
            return records, report
        last_report = report
    return [], last_report


def expand_uploaded_files(file_bytes: bytes, filename: str) -> List[Tuple[str, bytes]]:
    """Expand upload into parseable files, including .zip archives."""
    if not filename.lower().endswith(".zip"):
        return [(filename, file_bytes)]

    expanded: List[Tuple[str, bytes]] = []
    with zipfile.ZipFile(io.BytesIO(file_bytes)) as zf:
        for info in zf.infolist():
            if info.is_dir():
                continue
            if info.filename.lower().endswith(SUPPORTED_EXTENSIONS):
                expanded.append((info.filename, zf.read(info)))
    return expanded


def merge_records(batches: Iterable[List[FinancialRecord]]) -> List[FinancialRecord]:
    """Concatenate parsed uploads in order; later uploads win duplicate firm-years."""
    merged: List[FinancialRecord] = []
    for batch in batches:
        merged.extend(batch)
    return merged
