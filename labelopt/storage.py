from __future__ import annotations

import json
import logging
import os
import random
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, Iterable, List, Literal, Mapping, Optional, Sequence

from prometheus_client import Counter, Histogram
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from labelopt.models import Campaign, CampaignUpdate

logger = logging.getLogger(__name__)

UTC = timezone.utc

DB_OPS = Counter("labelopt_store_db_ops_total", "DB operations", ["op"])
DB_ERRORS = Counter("labelopt_store_db_errors_total", "DB errors", ["op"])
DB_LAT = Histogram("labelopt_store_db_latency_seconds", "DB latencies", ["op"])

CAMPAIGN_COLUMNS: Sequence[str] = (
    "campaign_name", "label",
    "budget", "cost", "cost_3d", "conversions", "cpa", "tcpa",
    "label_budget", "label_remaining_budget", "label_kpi",
    "mtd_cluster_spend_pct", "label_cost", "label_cost_3d", "label_conversions", "label_cpa",
    "row_order", "region",
    "new_daily_budget", "new_target_cpa",
)

# fields a manual edit may touch
EDITABLE_COLUMNS = frozenset(CAMPAIGN_COLUMNS)

RunStatus = Literal["success", "failed", "dry_run"]


class PersistenceError(Exception):
    """Write-back did not take effect; nothing from the batch was applied."""


def _now_utc() -> datetime:
    return datetime.now(UTC)


def _iso(dt: datetime) -> str:
    return dt.replace(microsecond=0).isoformat()


def _jitter(base: float) -> float:
    return base * (0.8 + 0.4 * random.random())


def _to_json(obj: Any) -> Optional[str]:
    if obj is None:
        return None
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def _from_json(s: Optional[str]) -> Optional[Any]:
    if not s:
        return None
    try:
        return json.loads(s)
    except ValueError:
        return None


def _retry_sql(retries: int = 5, base_sleep: float = 0.03, max_sleep: float = 0.5) -> Callable:
    """Retry transient OperationalErrors (locked db) with jittered backoff; short circuit-break after repeated failures."""
    def deco(fn: Callable) -> Callable:
        @wraps(fn)
        def wrapper(self, *args, **kwargs):
            state = self._cb[fn.__name__]
            now = time.time()
            if state["open_until"] and now < state["open_until"]:
                raise OperationalError("circuit_open", None, None)
            last_exc: Optional[Exception] = None
            for i in range(retries):
                t0 = time.perf_counter()
                try:
                    DB_OPS.labels(fn.__name__).inc()
                    out = fn(self, *args, **kwargs)
                    DB_LAT.labels(fn.__name__).observe(time.perf_counter() - t0)
                    state["n"] = 0
                    return out
                except OperationalError as e:
                    last_exc = e
                    DB_ERRORS.labels(fn.__name__).inc()
                    logger.debug("%s: transient DB error (attempt %d/%d): %s", fn.__name__, i + 1, retries, e)
                    time.sleep(min(max_sleep, _jitter(base_sleep * (2 ** i))))
                except Exception:
                    DB_ERRORS.labels(fn.__name__).inc()
                    raise
            state["n"] += 1
            if state["n"] >= 3:
                state["open_until"] = time.time() + 2.0
            assert last_exc is not None
            raise last_exc
        return wrapper
    return deco


@dataclass(frozen=True)
class RunRecord:
    id: str
    ts_iso: str
    status: str
    campaign_count: int
    label_count: int
    duration_ms: int
    warnings: List[str]
    error: Optional[str]


class Store:
    SCHEMA_VERSION = 2

    def __init__(self, path: str):
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        self.path = path
        self.eng: Engine = create_engine(
            f"sqlite:///{path}",
            connect_args={"check_same_thread": False, "timeout": 30},
            pool_pre_ping=True,
        )
        self._cb: defaultdict = defaultdict(lambda: {"n": 0, "open_until": 0.0})
        self._init_db()

    def close(self) -> None:
        self.eng.dispose()

    def _init_db(self) -> None:
        with self.eng.begin() as c:
            c.exec_driver_sql("PRAGMA journal_mode=WAL;")
            c.exec_driver_sql("PRAGMA synchronous=NORMAL;")
            c.exec_driver_sql("PRAGMA busy_timeout=30000;")
            c.exec_driver_sql("CREATE TABLE IF NOT EXISTS schema_version(version INTEGER NOT NULL);")
            c.exec_driver_sql("""
              CREATE TABLE IF NOT EXISTS campaigns(
                id TEXT PRIMARY KEY,
                campaign_name TEXT NOT NULL,
                label TEXT NOT NULL DEFAULT '',
                budget REAL NOT NULL DEFAULT 0,
                cost REAL NOT NULL DEFAULT 0,
                cost_3d REAL NOT NULL DEFAULT 0,
                conversions REAL NOT NULL DEFAULT 0,
                cpa REAL NOT NULL DEFAULT 0,
                tcpa REAL NOT NULL DEFAULT 0,
                label_budget REAL NOT NULL DEFAULT 0,
                label_remaining_budget REAL NOT NULL DEFAULT 0,
                label_kpi REAL NOT NULL DEFAULT 0,
                mtd_cluster_spend_pct REAL NOT NULL DEFAULT 0,
                label_cost REAL NOT NULL DEFAULT 0,
                label_cost_3d REAL NOT NULL DEFAULT 0,
                label_conversions REAL NOT NULL DEFAULT 0,
                label_cpa REAL NOT NULL DEFAULT 0,
                row_order INTEGER NOT NULL DEFAULT 0,
                region TEXT,
                new_daily_budget REAL,
                new_target_cpa REAL,
                updated_iso TEXT NOT NULL,
                UNIQUE(campaign_name, label)
              );
            """)
            c.exec_driver_sql("CREATE INDEX IF NOT EXISTS idx_campaigns_order ON campaigns(row_order);")
            c.exec_driver_sql("CREATE INDEX IF NOT EXISTS idx_campaigns_label ON campaigns(label);")
            c.exec_driver_sql("""
              CREATE TABLE IF NOT EXISTS optimization_runs(
                id TEXT PRIMARY KEY,
                ts_iso TEXT NOT NULL,
                status TEXT NOT NULL CHECK(status IN ('success','failed','dry_run')),
                campaign_count INTEGER NOT NULL DEFAULT 0,
                label_count INTEGER NOT NULL DEFAULT 0,
                duration_ms INTEGER NOT NULL DEFAULT 0,
                warnings TEXT,
                error TEXT
              );
            """)
            c.exec_driver_sql("CREATE INDEX IF NOT EXISTS idx_runs_time ON optimization_runs(ts_iso);")
            cur = c.execute(text("SELECT version FROM schema_version")).fetchone()
            if not cur:
                c.execute(text("INSERT INTO schema_version(version) VALUES (:v)"), {"v": self.SCHEMA_VERSION})
            else:
                current = int(cur[0])
                if current < self.SCHEMA_VERSION:
                    self._migrate(c, current, self.SCHEMA_VERSION)

    def _migrate(self, conn, current: int, target: int) -> None:
        for v in range(current + 1, target + 1):
            if v == 2:
                cols = {r[1] for r in conn.exec_driver_sql("PRAGMA table_info(campaigns);").fetchall()}
                if "region" not in cols:
                    conn.exec_driver_sql("ALTER TABLE campaigns ADD COLUMN region TEXT;")
            conn.execute(text("UPDATE schema_version SET version=:v"), {"v": v})
        logger.info("Migrated store schema %d -> %d", current, target)

    @contextmanager
    def _begin(self):
        with self.eng.begin() as conn:
            yield conn

    # -----------------------
    # Campaigns
    # -----------------------
    @staticmethod
    def _campaign_params(record: Mapping[str, Any], cid: str, now_iso: str) -> Dict[str, Any]:
        params: Dict[str, Any] = {col: record.get(col) for col in CAMPAIGN_COLUMNS}
        params["label"] = params["label"] or ""
        params["row_order"] = int(params["row_order"] or 0)
        for col in CAMPAIGN_COLUMNS:
            if col not in ("campaign_name", "label", "row_order", "region", "new_daily_budget", "new_target_cpa"):
                params[col] = float(params[col] or 0.0)
        params["id"] = cid
        params["updated_iso"] = now_iso
        return params

    def upsert_campaigns(self, records: Iterable[Mapping[str, Any]]) -> int:
        """Insert or update by (campaign_name, label), all rows in one transaction."""
        return self._write_campaigns(list(records), replace=False)

    def replace_campaigns(self, records: Iterable[Mapping[str, Any]]) -> int:
        """
        Swap the whole campaign table for `records`. Delete and insert share one
        transaction, so on any failure the previous campaigns are still there.
        """
        return self._write_campaigns(list(records), replace=True)

    def _write_campaigns(self, rows: List[Mapping[str, Any]], replace: bool) -> int:
        try:
            return self._write_campaigns_tx(rows, replace)
        except SQLAlchemyError as e:
            logger.error("Import of %d campaigns rolled back: %s", len(rows), e)
            raise PersistenceError(f"Campaign import failed: {e}") from e

    @_retry_sql()
    def _write_campaigns_tx(self, rows: List[Mapping[str, Any]], replace: bool) -> int:
        if not rows and not replace:
            return 0
        now_iso = _iso(_now_utc())
        cols = ", ".join(CAMPAIGN_COLUMNS)
        binds = ", ".join(f":{c}" for c in CAMPAIGN_COLUMNS)
        # keep previous optimizer output unless the import carries its own
        updates = ", ".join(
            f"{c}=excluded.{c}" for c in CAMPAIGN_COLUMNS
            if c not in ("campaign_name", "label", "new_daily_budget", "new_target_cpa")
        )
        sql = f"""
          INSERT INTO campaigns (id, {cols}, updated_iso)
          VALUES (:id, {binds}, :updated_iso)
          ON CONFLICT(campaign_name, label) DO UPDATE SET
            {updates},
            new_daily_budget=COALESCE(excluded.new_daily_budget, campaigns.new_daily_budget),
            new_target_cpa=COALESCE(excluded.new_target_cpa, campaigns.new_target_cpa),
            updated_iso=excluded.updated_iso
        """
        payload = [self._campaign_params(r, str(r.get("id") or uuid.uuid4()), now_iso) for r in rows]
        with self._begin() as c:
            if replace:
                removed = c.execute(text("DELETE FROM campaigns")).rowcount
                logger.info("Replacing %d existing campaigns", removed)
            if payload:
                c.execute(text(sql), payload)
        logger.info("Upserted %d campaigns", len(payload))
        return len(payload)

    @_retry_sql()
    def create_campaign(self, record: Mapping[str, Any]) -> Campaign:
        cid = str(record.get("id") or uuid.uuid4())
        params = self._campaign_params(record, cid, _iso(_now_utc()))
        cols = ", ".join(CAMPAIGN_COLUMNS)
        binds = ", ".join(f":{c}" for c in CAMPAIGN_COLUMNS)
        with self._begin() as c:
            c.execute(text(f"INSERT INTO campaigns (id, {cols}, updated_iso) VALUES (:id, {binds}, :updated_iso)"), params)
        created = self.get_campaign(cid)
        assert created is not None
        return created

    @_retry_sql()
    def load_snapshot(self) -> List[Campaign]:
        with self._begin() as c:
            rows = c.execute(text("SELECT * FROM campaigns ORDER BY row_order ASC, id ASC")).mappings().all()
        return [Campaign.from_row(r) for r in rows]

    @_retry_sql()
    def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        with self._begin() as c:
            row = c.execute(text("SELECT * FROM campaigns WHERE id=:id"), {"id": campaign_id}).mappings().fetchone()
        return Campaign.from_row(row) if row else None

    @_retry_sql()
    def update_campaign(self, campaign_id: str, **fields: Any) -> Campaign:
        """Manual single-record edit."""
        unknown = set(fields) - EDITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown campaign field(s): {', '.join(sorted(unknown))}")
        if not fields:
            current = self.get_campaign(campaign_id)
            if current is None:
                raise KeyError(campaign_id)
            return current
        sets = ", ".join(f"{k}=:{k}" for k in fields)
        params = dict(fields, id=campaign_id, updated_iso=_iso(_now_utc()))
        with self._begin() as c:
            res = c.execute(text(f"UPDATE campaigns SET {sets}, updated_iso=:updated_iso WHERE id=:id"), params)
            if res.rowcount == 0:
                raise KeyError(campaign_id)
        updated = self.get_campaign(campaign_id)
        assert updated is not None
        return updated

    @_retry_sql()
    def delete_campaign(self, campaign_id: str) -> bool:
        with self._begin() as c:
            res = c.execute(text("DELETE FROM campaigns WHERE id=:id"), {"id": campaign_id})
        return res.rowcount > 0

    @_retry_sql()
    def delete_all(self) -> int:
        with self._begin() as c:
            res = c.execute(text("DELETE FROM campaigns"))
        return res.rowcount

    def apply_updates(self, updates: Sequence[CampaignUpdate]) -> int:
        """
        Persist one optimization pass. Either every campaign gets its new
        budget/tCPA or none does; any failure raises PersistenceError after rollback.
        """
        if not updates:
            return 0
        try:
            return self._apply_updates(updates)
        except PersistenceError:
            raise
        except SQLAlchemyError as e:
            logger.error("Write-back of %d updates rolled back: %s", len(updates), e)
            raise PersistenceError(f"Write-back failed: {e}") from e

    @_retry_sql()
    def _apply_updates(self, updates: Sequence[CampaignUpdate]) -> int:
        now_iso = _iso(_now_utc())
        payload = [
            {"id": u.campaign_id, "b": u.new_daily_budget, "t": u.new_target_cpa, "ts": now_iso}
            for u in updates
        ]
        with self._begin() as c:
            missing: List[str] = []
            for p in payload:
                res = c.execute(
                    text("UPDATE campaigns SET new_daily_budget=:b, new_target_cpa=:t, updated_iso=:ts WHERE id=:id"),
                    p,
                )
                if res.rowcount == 0:
                    missing.append(p["id"])
            if missing:
                # raising inside the transaction block rolls every update back
                raise PersistenceError(
                    f"{len(missing)} campaign(s) no longer exist: {', '.join(missing[:5])}"
                )
        return len(payload)

    # -----------------------
    # Run history
    # -----------------------
    @_retry_sql()
    def record_run(
        self,
        *,
        status: RunStatus,
        campaign_count: int = 0,
        label_count: int = 0,
        duration_ms: int = 0,
        warnings: Optional[List[str]] = None,
        error: Optional[str] = None,
        ts: Optional[datetime] = None,
    ) -> str:
        rid = str(uuid.uuid4())
        with self._begin() as c:
            c.execute(
                text("""
                  INSERT INTO optimization_runs
                  (id, ts_iso, status, campaign_count, label_count, duration_ms, warnings, error)
                  VALUES (:id, :ts, :st, :cc, :lc, :dur, :w, :err)
                """),
                {
                    "id": rid,
                    "ts": _iso(ts or _now_utc()),
                    "st": status,
                    "cc": int(campaign_count),
                    "lc": int(label_count),
                    "dur": int(duration_ms),
                    "w": _to_json(warnings or []),
                    "err": error,
                },
            )
        return rid

    @_retry_sql()
    def recent_runs(self, limit: int = 20) -> List[RunRecord]:
        with self._begin() as c:
            rows = c.execute(
                text("SELECT * FROM optimization_runs ORDER BY ts_iso DESC, rowid DESC LIMIT :lim"),
                {"lim": max(1, min(500, int(limit)))},
            ).mappings().all()
        return [
            RunRecord(
                id=r["id"],
                ts_iso=r["ts_iso"],
                status=r["status"],
                campaign_count=int(r["campaign_count"]),
                label_count=int(r["label_count"]),
                duration_ms=int(r["duration_ms"]),
                warnings=_from_json(r["warnings"]) or [],
                error=r["error"],
            )
            for r in rows
        ]
