from __future__ import annotations

"""
LABELOPT COMMAND LINE
Label budget & tCPA reallocation for campaign dashboards

Commands:
- import FILE      load a campaign report (.xlsx/.csv) into the record store
- optimize         run one reallocation pass and write it back atomically
- export FILE      write the snapshot with New Daily Budget / New Target CPA
- summary          per-label aggregates, segments and region spend share
- runs             recent optimization runs
"""

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from labelopt.analytics.metrics import (
    label_summary,
    performance_segments,
    region_spend_ratio,
    tcpa_variance_buckets,
)
from labelopt.config import (
    DB_PATH_DEFAULT,
    SCHEMA_PATH_DEFAULT,
    SETTINGS_PATH_DEFAULT,
    OptimizerConfig,
    load_settings,
)
from labelopt.engine.regional import RegionMatcher
from labelopt.infrastructure.spreadsheet import read_campaign_sheet, write_campaign_sheet
from labelopt.service import OptimizationService
from labelopt.storage import PersistenceError, Store
from labelopt.utils import cfg, iso_no_micro, now_account

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or os.getenv("LOG_LEVEL") or "INFO").upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    noise_levels = {
        "sqlalchemy": logging.WARNING,
        "sqlalchemy.engine": logging.WARNING,
        "openpyxl": logging.WARNING,
    }
    for name, level_ in noise_levels.items():
        logging.getLogger(name).setLevel(level_)


def _db_path(settings: Dict[str, Any], override: Optional[str]) -> str:
    return (
        override
        or os.getenv("LABELOPT_DB_PATH")
        or cfg(settings, "storage.sqlite.path")
        or DB_PATH_DEFAULT
    )


def _import_failed(path: str, error: Exception) -> int:
    logger.error("Import of %s failed: %s", path, error)
    print(json.dumps({"success": False, "error": "Import failed", "details": str(error)}))
    return 1


def cmd_import(args: argparse.Namespace, store: Store, settings: Dict[str, Any]) -> int:
    try:
        records, rejects = read_campaign_sheet(args.file)
    except ValueError as e:
        return _import_failed(args.file, e)
    for r in rejects:
        logger.warning("Row %d (%s) rejected: %s", r.row_number, r.campaign_name or "?", " | ".join(r.errors))
    try:
        if args.replace:
            count = store.replace_campaigns(records)
        else:
            count = store.upsert_campaigns(records)
    except PersistenceError as e:
        return _import_failed(args.file, e)
    print(json.dumps({"success": True, "count": count, "rejected": len(rejects)}))
    return 0


def cmd_optimize(args: argparse.Namespace, store: Store, settings: Dict[str, Any]) -> int:
    service = OptimizationService(
        store,
        config=OptimizerConfig.from_settings(settings),
        matcher=RegionMatcher.from_settings(settings),
    )
    report = service.run(dry_run=args.dry_run, max_workers=args.workers)
    for w in report.warnings:
        logger.warning(w)

    if args.explain and report.result is not None:
        for g in report.result.groups:
            print(json.dumps({
                "label": g.label,
                "target_daily_spend": round(g.target_daily_spend, 2),
                "region_cap": round(g.region_cap.daily_cap, 2) if g.region_cap else None,
                "region_cap_applied": bool(g.region_cap and g.region_cap.applied),
                "weighted_avg_tcpa": round(g.weighted_avg_tcpa, 4),
                "correction_factor": round(g.correction_factor, 4),
                "unallocated_surplus": round(g.unallocated_surplus, 2),
                "campaigns": [
                    {
                        "name": i.campaign.campaign_name,
                        "score": round(i.score, 4),
                        "regional": i.is_regional,
                        "new_daily_budget": round(i.new_daily_budget, 2),
                        "raw_tcpa": round(i.raw_tcpa, 4),
                        "new_tcpa": round(i.new_tcpa, 2),
                    }
                    for i in g.items
                ],
            }, indent=2))

    if not report.success:
        print(json.dumps({"success": False, "error": "Optimization failed", "details": report.error}))
        return 1
    print(json.dumps({"success": True, "count": report.count, "dry_run": report.dry_run}))
    return 0


def cmd_export(args: argparse.Namespace, store: Store, settings: Dict[str, Any]) -> int:
    count = write_campaign_sheet(store.load_snapshot(), args.file)
    print(json.dumps({"success": True, "count": count, "file": args.file}))
    return 0


def cmd_summary(args: argparse.Namespace, store: Store, settings: Dict[str, Any]) -> int:
    snapshot = store.load_snapshot()
    opt_cfg = OptimizerConfig.from_settings(settings)
    region = region_spend_ratio(snapshot, RegionMatcher.from_settings(settings))
    payload = {
        "generated_at": iso_no_micro(now_account()),
        "labels": label_summary(snapshot).round(2).to_dict(orient="records"),
        "segments": performance_segments(snapshot, opt_cfg.min_daily_budget),
        "tcpa_variance": tcpa_variance_buckets(snapshot),
        "region": {
            "name": region.region,
            "cost": round(region.region_cost, 2),
            "total_cost": round(region.total_cost, 2),
            "ratio_pct": round(region.ratio_pct, 2),
            "cap_pct": round(opt_cfg.region_budget_ratio * 100, 2),
        },
    }
    print(json.dumps(payload, indent=2, default=str))
    return 0


def cmd_runs(args: argparse.Namespace, store: Store, settings: Dict[str, Any]) -> int:
    for r in store.recent_runs(args.limit):
        line = f"{r.ts_iso}  {r.status:<8} campaigns={r.campaign_count:<5} labels={r.label_count:<4} {r.duration_ms}ms"
        if r.error:
            line += f"  error={r.error}"
        print(line)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="labelopt", description="Label budget & tCPA reallocation")
    parser.add_argument("--settings", default=SETTINGS_PATH_DEFAULT)
    parser.add_argument("--schema", default=SCHEMA_PATH_DEFAULT)
    parser.add_argument("--db", default=None, help="SQLite path (overrides settings)")
    parser.add_argument("--log-level", default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("import", help="load a campaign report into the store")
    p.add_argument("file")
    p.add_argument("--replace", action="store_true", help="replace all stored campaigns with the report")
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("optimize", help="run one reallocation pass")
    p.add_argument("--dry-run", action="store_true")
    p.add_argument("--workers", type=int, default=None, help="evaluate labels on N threads")
    p.add_argument("--explain", action="store_true", help="print per-label decisions")
    p.set_defaults(func=cmd_optimize)

    p = sub.add_parser("export", help="export the snapshot with optimizer output")
    p.add_argument("file")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("summary", help="label aggregates and dashboard metrics")
    p.set_defaults(func=cmd_summary)

    p = sub.add_parser("runs", help="recent optimization runs")
    p.add_argument("--limit", type=int, default=20)
    p.set_defaults(func=cmd_runs)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    load_dotenv()
    configure_logging(args.log_level)

    try:
        settings = load_settings(args.settings, args.schema)
        OptimizerConfig.from_settings(settings)
    except ValueError as exc:
        logger.error("Configuration invalid: %s", exc)
        print("Fatal configuration error. Exiting.", file=sys.stderr)
        return 1

    settings_level = cfg(settings, "logging.level")
    if settings_level and not (args.log_level or os.getenv("LOG_LEVEL")):
        logging.getLogger().setLevel(getattr(logging, str(settings_level).upper(), logging.INFO))

    store = Store(_db_path(settings, args.db))
    try:
        return args.func(args, store, settings)
    except FileNotFoundError as e:
        logger.error("File not found: %s", e)
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
