"""
Infrastructure layer: delimited text (CSV) reading.

Every cell is returned as text; numeric interpretation is left to ingestion.
"""
import csv
import io
import logging
from typing import Any

import pandas as pd

logger = logging.getLogger(__name__)

Row = dict[str, Any]

BOM = "\ufeff"


def _clean_header(header: Any) -> str:
    return str(header).replace(BOM, "").strip()


def read_delimited_text(text: str) -> list[Row]:
    """
    Parse delimited text with a header row into row dicts.

    The delimiter is sniffed (comma, semicolon, tab, ...); when sniffing
    fails the text is read as comma separated.

    Args:
        text: Raw file contents

    Returns:
        One dict per non-blank data row, keyed by trimmed header
    """
    text = text.lstrip(BOM)
    if not text.strip():
        return []

    options = dict(
        dtype=str,
        keep_default_na=False,
        na_filter=False,
        skip_blank_lines=True,
    )
    try:
        frame = pd.read_csv(io.StringIO(text), sep=None, engine="python", **options)
    except (pd.errors.ParserError, csv.Error) as e:
        logger.debug(f"Delimiter sniffing failed ({e}), falling back to comma")
        frame = pd.read_csv(io.StringIO(text), sep=",", **options)

    frame.columns = [_clean_header(c) for c in frame.columns]
    rows = frame.to_dict("records")
    logger.debug(f"Read {len(rows)} rows with columns {list(frame.columns)}")
    return rows

