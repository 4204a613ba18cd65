"""Common helper functions for I/O and auditing.

The index pipeline itself works on in-memory tables.  This module is
the thin file-system layer around it: it reads the per-city CSV files
laid out as ``<data_dir>/<clean city name>/<file>.csv``, writes result
tables, and implements a simple audit logging mechanism that appends
JSON lines to the ``logs/`` directory, enabling post-hoc inspection of
a run.
"""

from __future__ import annotations

import datetime as _dt
import json
import logging
import os
import pathlib
import re
from typing import Any, Dict, Iterable, Optional, Tuple

import pandas as pd

from vulnerability_index.models import SUBNATIONAL, WEATHER, CityInputs, TableVersions

logger = logging.getLogger(__name__)

WEATHER_FILE = "weather_data_nasa.csv"
SOCIAL_FILE = "social_vulnerability_data.csv"
# table name -> file stem; the harmonized version carries a "_fixed" suffix
NATIONAL_FILES: Dict[str, str] = {
    "climate": "country_climate_data",
    "economic": "economic_gender_data",
}
FIXED_SUFFIX = "_fixed"


def clean_city_name(name: str) -> str:
    """Folder name of a city: lower case, non-alphanumerics collapsed to ``_``.

    >>> clean_city_name("São Paulo")
    's_o_paulo'
    """
    cleaned = re.sub(r"[^a-z0-9]", "_", name.lower())
    cleaned = re.sub(r"_+", "_", cleaned)
    return cleaned.strip("_")


def ensure_dir(path: str) -> None:
    """Ensure that the directory exists."""
    if path:
        pathlib.Path(path).mkdir(parents=True, exist_ok=True)


def write_table(df: pd.DataFrame, path: str) -> None:
    """Write a DataFrame to CSV, creating the directory if needed."""
    ensure_dir(os.path.dirname(path))
    df.to_csv(path, index=False)


def read_table(path: pathlib.Path) -> Tuple[Optional[pd.DataFrame], Optional[str]]:
    """Read a CSV file.

    Returns ``(frame, None)`` on success, ``(None, None)`` when the file
    does not exist and ``(None, message)`` when it cannot be parsed.
    """
    if not path.exists():
        return None, None
    try:
        return pd.read_csv(path), None
    except (OSError, UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        logger.warning("Cannot read %s: %s", path, exc)
        return None, f"Error reading {path.name}: {exc}"


def load_city_inputs(city: str, city_dir: pathlib.Path) -> CityInputs:
    """Read every raw table of one city from its folder.

    Missing files leave the source empty.  An unreadable weather or
    social file is reported through ``CityInputs.load_errors``, an
    unreadable national file through ``TableVersions.error`` of its
    table.
    """
    errors: Dict[str, str] = {}

    weather, err = read_table(city_dir / WEATHER_FILE)
    if err:
        errors[WEATHER] = err

    national: Dict[str, TableVersions] = {}
    for table, stem in NATIONAL_FILES.items():
        original, err_original = read_table(city_dir / f"{stem}.csv")
        fixed, err_fixed = read_table(city_dir / f"{stem}{FIXED_SUFFIX}.csv")
        table_errors = [e for e in (err_original, err_fixed) if e]
        if original is not None or fixed is not None or table_errors:
            national[table] = TableVersions(
                original=original,
                fixed=fixed,
                error="; ".join(table_errors) or None,
            )

    social, err = read_table(city_dir / SOCIAL_FILE)
    if err:
        errors[SUBNATIONAL] = err

    return CityInputs(city=city, weather=weather, national=national, subnational=social, load_errors=errors)


def load_all_inputs(data_dir: pathlib.Path, cities: Iterable[str]) -> Dict[str, CityInputs]:
    """Load the inputs of every city whose folder exists under ``data_dir``."""
    out: Dict[str, CityInputs] = {}
    for city in cities:
        city_dir = data_dir / clean_city_name(city)
        if city_dir.is_dir():
            out[city] = load_city_inputs(city, city_dir)
        else:
            logger.debug("No data folder for %s (%s)", city, city_dir)
    return out


def log_event(layer: str, action: str, payload: Dict[str, Any], log_dir: str = "logs") -> None:
    """Append an event to the daily audit log.

    Logs are stored under ``logs/audit_YYYY-MM-DD.ndjson``.  Each line
    contains a JSON object with ``timestamp``, ``layer``, ``action`` and
    ``payload`` keys.  The timestamp is in UTC ISO8601 format.
    """
    ensure_dir(log_dir)
    now = _dt.datetime.now(_dt.timezone.utc)
    event = {
        "timestamp": now.isoformat().replace("+00:00", "Z"),
        "layer": layer,
        "action": action,
        "payload": payload,
    }
    fname = os.path.join(log_dir, f"audit_{now.date().isoformat()}.ndjson")
    with open(fname, "a", encoding="utf-8") as f:
        f.write(json.dumps(event, default=str) + "\n")
