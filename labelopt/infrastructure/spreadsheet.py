"""
Campaign sheet import/export.

Import reads the ad platform's campaign report (first sheet of an .xlsx, or
a .csv) and maps its headers to campaign fields. Export writes the snapshot
back with the optimizer's two output columns appended.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Iterable, List, Sequence, Tuple

import pandas as pd

from labelopt.infrastructure.data_validation import RejectedRow, ValidationError, validate_campaign
from labelopt.models import Campaign

logger = logging.getLogger(__name__)

# source header → field; alternates are tried in order
IMPORT_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "campaign_name": ("Campaign name", "Campaign Name"),
    "label": ("Labels on Campaign",),
    "budget": ("Camp. budget", "Camp. Budget"),
    "cost": ("Camp. cost", "Camp. Cost (MTD)"),
    "cost_3d": ("Camp. 3D cost", "Camp. 3D Cost"),
    "conversions": ("Camp. conv.", "Camp. Conv"),
    "cpa": ("Camp. CPA",),
    "tcpa": ("Camp. tCPA",),
    "mtd_cluster_spend_pct": ("MTD Cluster Spend", "MTD Cluster Spend (%)"),
    "label_budget": ("Label budget", "Label Budget"),
    "label_cost": ("Label cost", "Label Cost (MTD)"),
    "label_cost_3d": ("Label 3D cost", "Label 3D Cost"),
    "label_conversions": ("Label conv.", "Label Conv"),
    "label_remaining_budget": ("Label remaining budget", "Label Remaining Budget (Daily)"),
    "label_kpi": ("Label KPI value", "Label KPI Value"),
    "label_cpa": ("Label CPA",),
}

EXPORT_COLUMNS: Sequence[Tuple[str, str]] = (
    ("Campaign Name", "campaign_name"),
    ("Labels on Campaign", "label"),
    ("Camp. Budget", "budget"),
    ("Camp. Cost (MTD)", "cost"),
    ("Camp. 3D Cost", "cost_3d"),
    ("Camp. Conv", "conversions"),
    ("Camp. CPA", "cpa"),
    ("Camp. tCPA", "tcpa"),
    ("MTD Cluster Spend (%)", "mtd_cluster_spend_pct"),
    ("Label Budget", "label_budget"),
    ("Label Cost (MTD)", "label_cost"),
    ("Label 3D Cost", "label_cost_3d"),
    ("Label Conv", "label_conversions"),
    ("Label Remaining Budget (Daily)", "label_remaining_budget"),
    ("Label KPI Value", "label_kpi"),
    ("Label CPA", "label_cpa"),
    ("New Daily Budget", "new_daily_budget"),
    ("New Target CPA", "new_target_cpa"),
)

EXPORT_SHEET_NAME = "Optimized Data"


SUPPORTED_SUFFIXES = (".xlsx", ".csv")

# tried in order; cp1252 covers reports saved by desktop spreadsheet apps
CSV_ENCODINGS = ("utf-8-sig", "cp1252")


def _read_frame(path: str) -> pd.DataFrame:
    suffix = os.path.splitext(path)[1].lower()
    if suffix == ".xlsx":
        return pd.read_excel(path, sheet_name=0, dtype=object, engine="openpyxl")
    if suffix != ".csv":
        raise ValueError(
            f"Unsupported report format {suffix or '(none)'!r}; save the report as "
            f"{' or '.join(SUPPORTED_SUFFIXES)}"
        )
    for encoding in CSV_ENCODINGS[:-1]:
        try:
            return pd.read_csv(path, dtype=object, keep_default_na=False, encoding=encoding)
        except UnicodeDecodeError:
            logger.debug("%s is not %s encoded, trying the next codec", path, encoding)
    return pd.read_csv(path, dtype=object, keep_default_na=False,
                       encoding=CSV_ENCODINGS[-1], encoding_errors="replace")


def _pick(row: Dict[str, Any], headers: Tuple[str, ...]) -> Any:
    for h in headers:
        if h in row and row[h] is not None and not (isinstance(row[h], float) and pd.isna(row[h])):
            if isinstance(row[h], str) and not row[h].strip():
                continue
            return row[h]
    return None


def rows_to_records(rows: Iterable[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], List[RejectedRow]]:
    records: List[Dict[str, Any]] = []
    rejects: List[RejectedRow] = []
    for index, row in enumerate(rows):
        raw = {fld: _pick(row, headers) for fld, headers in IMPORT_COLUMNS.items()}
        try:
            rec = validate_campaign(raw)
        except ValidationError as e:
            rejects.append(RejectedRow(row_number=index + 2, campaign_name=str(raw.get("campaign_name") or ""),
                                       errors=e.message.split("; ")))
            continue
        rec["row_order"] = index
        records.append(rec)
    return records, rejects


def read_campaign_sheet(path: str) -> Tuple[List[Dict[str, Any]], List[RejectedRow]]:
    """Parse a campaign report. Returns (valid records, rejected rows)."""
    if not path or not os.path.exists(path):
        raise FileNotFoundError(path)
    df = _read_frame(path)
    df.columns = [str(c).strip() for c in df.columns]
    logger.info("Parsed %d rows from %s", len(df), path)
    if len(df):
        logger.debug("First row headers: %s", list(df.columns))
    records, rejects = rows_to_records(df.to_dict(orient="records"))
    if rejects:
        logger.warning("Rejected %d of %d rows from %s", len(rejects), len(df), path)
    return records, rejects


def campaigns_frame(campaigns: Sequence[Campaign]) -> pd.DataFrame:
    data = [
        {header: (getattr(c, attr) if getattr(c, attr) is not None else 0) for header, attr in EXPORT_COLUMNS}
        for c in sorted(campaigns, key=lambda c: c.row_order)
    ]
    return pd.DataFrame(data, columns=[h for h, _ in EXPORT_COLUMNS])


def write_campaign_sheet(campaigns: Sequence[Campaign], path: str) -> int:
    df = campaigns_frame(campaigns)
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    if path.lower().endswith(".csv"):
        df.to_csv(path, index=False)
    else:
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name=EXPORT_SHEET_NAME, index=False)
    logger.info("Exported %d campaigns to %s", len(df), path)
    return len(df)
