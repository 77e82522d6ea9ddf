"""Loading the municipality reference list (CSV or JSON)."""

import csv
import logging
from pathlib import Path
from typing import Iterable, List, Optional
from urllib.parse import urlparse

import pandas as pd

from .models import Municipality

logger = logging.getLogger(__name__)

NAME_COLUMNS = ['name', 'municipality_name', 'municipality', 'Municipality']
TYPE_COLUMNS = ['type', 'municipality_type', 'Type']
URL_COLUMNS = ['website', 'base_url', 'url', 'Website']

MISSING_VALUES = {'', 'na', 'n/a', 'none', 'null', 'nan', '-'}


def is_missing_value(value) -> bool:
    """Check if a reference-file cell is empty or a missing-value placeholder."""
    if value is None:
        return True
    if not isinstance(value, str):
        value = str(value)
    return value.strip().lower() in MISSING_VALUES


def normalize_base_url(url: str) -> Optional[str]:
    """Normalize a municipality website to a URL without query or fragment.

    The scheme is kept as given; values without one get ``https://``.

    Args:
        url: Raw website value from the reference file

    Returns:
        Normalized URL, or None when the value is not a usable URL
    """
    if is_missing_value(url):
        return None

    url = str(url).strip()

    if not url.lower().startswith(('http://', 'https://')):
        url = 'https://' + url

    parsed = urlparse(url)
    if not parsed.netloc:
        return None

    path = parsed.path or '/'
    return f"{parsed.scheme}://{parsed.netloc}{path}"


def load_csv_robust(filepath: Path) -> pd.DataFrame:
    """Load CSV with automatic delimiter and encoding detection.

    Tries utf-8-sig, utf-8, latin-1 and cp1252; the delimiter is detected with
    csv.Sniffer and defaults to a comma.

    Raises:
        ValueError: If file cannot be read with any encoding
    """
    encodings = ['utf-8-sig', 'utf-8', 'latin-1', 'cp1252']

    for encoding in encodings:
        try:
            with open(filepath, 'r', encoding=encoding) as f:
                sample = f.read(8192)
        except UnicodeDecodeError:
            logger.debug(f"Encoding {encoding} failed for {filepath}")
            continue

        if not sample.strip():
            raise ValueError(f"Municipality file is empty: {filepath}")

        try:
            delimiter = csv.Sniffer().sniff(sample, delimiters=',;\t|').delimiter
        except csv.Error:
            delimiter = ','

        try:
            df = pd.read_csv(filepath, sep=delimiter, encoding=encoding,
                             dtype=str, keep_default_na=False)
        except (UnicodeDecodeError, pd.errors.ParserError) as e:
            logger.debug(f"Failed to parse {filepath} with {encoding}/{delimiter!r}: {e}")
            continue

        logger.info(f"Loaded {len(df)} rows from {filepath} (encoding {encoding}, delimiter {delimiter!r})")
        return df

    raise ValueError(f"Could not load CSV {filepath} with any encoding")


def _pick_column(df: pd.DataFrame, candidates: List[str]) -> Optional[str]:
    for column in candidates:
        if column in df.columns:
            return column
    return None


def dataframe_to_municipalities(df: pd.DataFrame) -> List[Municipality]:
    """Convert a reference DataFrame into Municipality records, preserving order."""
    if df.empty:
        return []
    name_col = _pick_column(df, NAME_COLUMNS)
    if name_col is None:
        raise ValueError(f"Municipality file has no name column (expected one of {NAME_COLUMNS})")
    type_col = _pick_column(df, TYPE_COLUMNS)
    url_col = _pick_column(df, URL_COLUMNS)

    municipalities = []
    for _, row in df.iterrows():
        name = row[name_col]
        if is_missing_value(name):
            continue
        municipalities.append(Municipality(
            name=str(name).strip(),
            type='' if type_col is None or is_missing_value(row[type_col]) else str(row[type_col]).strip(),
            base_url=None if url_col is None else normalize_base_url(row[url_col]),
        ))
    return municipalities


def load_municipalities(filepath: Path) -> List[Municipality]:
    """Load the municipality reference file.

    Args:
        filepath: ``.json`` (array of records) or CSV file

    Returns:
        Municipalities in file order
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise ValueError(f"File not found: {filepath}")

    if filepath.suffix.lower() == '.json':
        df = pd.read_json(filepath, orient='records', dtype=False)
        df = df.astype(object).where(df.notna(), None)
    else:
        df = load_csv_robust(filepath)

    municipalities = dataframe_to_municipalities(df)
    logger.info(f"Loaded {len(municipalities)} municipalities from {filepath}")
    return municipalities


def select_municipalities(municipalities: Iterable[Municipality],
                          types: Optional[List[str]] = None,
                          limit: Optional[int] = None) -> List[Municipality]:
    """Filter by type (case-insensitive; empty = all types) and keep the first ``limit``."""
    selected = list(municipalities)
    if types:
        wanted = {t.lower() for t in types}
        selected = [m for m in selected if m.type.lower() in wanted]
    if limit is not None:
        selected = selected[:limit]
    return selected
