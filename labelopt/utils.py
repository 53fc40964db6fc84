from __future__ import annotations

import math
import os
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Union

import pytz


# -----------------------
# Time
# -----------------------
def _parse_any_datetime(s: str) -> datetime:
    s = s.strip()
    if re.fullmatch(r"\d{10}", s):
        return datetime.fromtimestamp(int(s), tz=timezone.utc)
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError as e:
        raise ValueError(f"Invalid datetime: {s!r}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def now_utc() -> datetime:
    """Current UTC time; NOW_UTC (ISO or epoch seconds) pins it for reproducible reports."""
    fixed = os.getenv("NOW_UTC")
    return _parse_any_datetime(fixed) if fixed else datetime.now(timezone.utc)


def now_account(tz_name: Optional[str] = None) -> datetime:
    name = tz_name or os.getenv("LABELOPT_ACCOUNT_TIMEZONE") or os.getenv("ACCOUNT_TIMEZONE") or "UTC"
    try:
        tz = pytz.timezone(name)
    except pytz.UnknownTimeZoneError as e:
        raise ValueError(f"Invalid IANA timezone: {name!r}") from e
    return now_utc().astimezone(tz)


def iso_no_micro(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.replace(microsecond=0).isoformat()


# -----------------------
# Config resolution
# -----------------------
def getenv_f(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


def getenv_i(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


def cfg(d: Dict[str, Any], path: Union[str, Iterable[str]], default: Any = None) -> Any:
    """Walk a nested mapping by dotted path (or key sequence); default on any miss."""
    keys = path.split(".") if isinstance(path, str) else list(path)
    cur: Any = d
    for k in keys:
        if not isinstance(cur, dict) or k not in cur:
            return default
        cur = cur[k]
    return cur


def _settings_value(d: Dict[str, Any], key: str, cast, default):
    val = cfg(d, key, None)
    if val is None:
        return default
    try:
        return cast(val)
    except (TypeError, ValueError):
        return default


def env_or_cfg_f(d: Dict[str, Any], key: str, env: str, default: float) -> float:
    """A set environment variable overrides the settings file, which overrides the default."""
    return getenv_f(env, _settings_value(d, key, float, default))


def env_or_cfg_i(d: Dict[str, Any], key: str, env: str, default: int) -> int:
    return getenv_i(env, _settings_value(d, key, int, default))


# -----------------------
# Numbers
# -----------------------
_NON_NUMERIC = re.compile(r"[^\d.\-]")


def parse_number(value: Any, default: float = 0.0) -> float:
    """
    Lenient numeric parse for spreadsheet cells: strips currency symbols,
    thousands separators and percent signs. Unparseable → default.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        f = float(value)
        return f if math.isfinite(f) else default
    s = _NON_NUMERIC.sub("", str(value))
    if not s:
        return default
    try:
        f = float(s)
    except ValueError:
        return default
    return f if math.isfinite(f) else default


def safe_f(value: Any, default: float = 0.0) -> float:
    try:
        f = float(value)
    except (TypeError, ValueError):
        return default
    return f if math.isfinite(f) else default


def round_money(value: float) -> float:
    return round(float(value), 2)
