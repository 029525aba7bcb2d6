from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from parcel_signals.models import (
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_RUNNING,
    HistorySnapshot,
    IngestionJob,
    Parcel,
    Score,
)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


PARCEL_COLUMNS = [
    "jurisdiction",
    "pin",
    "source_sequence",
    "address",
    "city",
    "zip_code",
    "geometry_geojson",
    "centroid_x",
    "centroid_y",
    "minx",
    "miny",
    "maxx",
    "maxy",
    "calc_area_acres",
    "acreage",
    "land_value",
    "building_value",
    "total_value",
    "use_code",
    "use_label",
    "land_code",
    "billing_class",
    "deed_date",
    "sale_date",
    "sale_price",
    "owner_name",
    "owner_mailing",
    "owner_type",
    "raw_json",
    "updated_at",
]

_MUTABLE_PARCEL_COLUMNS = [c for c in PARCEL_COLUMNS if c not in ("jurisdiction", "pin")]


def parcel_row(parcel: Parcel, updated_at: str) -> Tuple[Any, ...]:
    bbox = parcel.bbox or (None, None, None, None)
    values = {
        "jurisdiction": parcel.jurisdiction,
        "pin": parcel.pin,
        "source_sequence": parcel.source_sequence,
        "address": parcel.address,
        "city": parcel.city,
        "zip_code": parcel.zip_code,
        "geometry_geojson": json.dumps(parcel.geometry) if parcel.geometry is not None else None,
        "centroid_x": parcel.centroid_x,
        "centroid_y": parcel.centroid_y,
        "minx": bbox[0],
        "miny": bbox[1],
        "maxx": bbox[2],
        "maxy": bbox[3],
        "calc_area_acres": parcel.calc_area_acres,
        "acreage": parcel.acreage,
        "land_value": parcel.land_value,
        "building_value": parcel.building_value,
        "total_value": parcel.total_value,
        "use_code": parcel.use_code,
        "use_label": parcel.use_label,
        "land_code": parcel.land_code,
        "billing_class": parcel.billing_class,
        "deed_date": parcel.deed_date,
        "sale_date": parcel.sale_date,
        "sale_price": parcel.sale_price,
        "owner_name": parcel.owner_name,
        "owner_mailing": parcel.owner_mailing,
        "owner_type": parcel.owner_type,
        "raw_json": json.dumps(parcel.raw or {}, sort_keys=True, default=str),
        "updated_at": updated_at,
    }
    return tuple(values[c] for c in PARCEL_COLUMNS)


_UPSERT_PARCEL_SQL = """
INSERT INTO parcels ({cols}) VALUES ({marks})
ON CONFLICT(jurisdiction, pin) DO UPDATE SET
    {updates}
""".format(
    cols=", ".join(PARCEL_COLUMNS),
    marks=", ".join("?" for _ in PARCEL_COLUMNS),
    updates=",\n    ".join(f"{c}=excluded.{c}" for c in _MUTABLE_PARCEL_COLUMNS),
)


class ParcelStore:
    """SQLite persistence for parcels, ingestion jobs, history snapshots and scores.

    One instance is created by the caller and handed to every pipeline
    component. ``ParcelStore(":memory:")`` works for tests.
    """

    def __init__(self, path: str) -> None:
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode; transactions are opened explicitly with BEGIN.
        self.conn = sqlite3.connect(self.path, isolation_level=None, timeout=30)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._init_schema()

    @classmethod
    def from_env(cls) -> "ParcelStore":
        from parcel_signals.settings import get_settings

        return cls(get_settings().db_path)

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def _init_schema(self) -> None:
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS parcels (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                jurisdiction TEXT NOT NULL,
                pin TEXT NOT NULL,
                source_sequence INTEGER,
                address TEXT,
                city TEXT,
                zip_code TEXT,
                geometry_geojson TEXT,
                centroid_x REAL,
                centroid_y REAL,
                minx REAL,
                miny REAL,
                maxx REAL,
                maxy REAL,
                calc_area_acres REAL,
                acreage REAL,
                land_value REAL,
                building_value REAL,
                total_value REAL,
                use_code TEXT,
                use_label TEXT,
                land_code TEXT,
                billing_class TEXT,
                deed_date TEXT,
                sale_date TEXT,
                sale_price REAL,
                owner_name TEXT,
                owner_mailing TEXT,
                owner_type TEXT,
                raw_json TEXT,
                updated_at TEXT NOT NULL,
                UNIQUE(jurisdiction, pin)
            )
            """
        )
        self.conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_parcels_jurisdiction ON parcels(jurisdiction)"
        )
        self.conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_parcels_bbox ON parcels(minx, miny, maxx, maxy)"
        )

        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS ingestion_jobs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                jurisdiction TEXT NOT NULL,
                status TEXT NOT NULL,
                cursor INTEGER NOT NULL DEFAULT 0,
                records_processed INTEGER NOT NULL DEFAULT 0,
                records_failed INTEGER NOT NULL DEFAULT 0,
                records_with_geometry INTEGER NOT NULL DEFAULT 0,
                history_written INTEGER NOT NULL DEFAULT 0,
                pages_processed INTEGER NOT NULL DEFAULT 0,
                completed INTEGER NOT NULL DEFAULT 0,
                started_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                completed_at TEXT,
                median_land_value REAL,
                null_audit_json TEXT NOT NULL DEFAULT '{}',
                error_json TEXT,
                lease_owner TEXT,
                lease_heartbeat_ts INTEGER
            )
            """
        )
        # A jurisdiction has at most one non-complete job.
        self.conn.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS ux_jobs_open_jurisdiction "
            "ON ingestion_jobs(jurisdiction) WHERE completed = 0"
        )
        self.conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_jobs_jurisdiction_started "
            "ON ingestion_jobs(jurisdiction, started_at DESC)"
        )

        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS history_snapshots (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                parcel_id INTEGER NOT NULL REFERENCES parcels(id) ON DELETE CASCADE,
                snapshot_date TEXT NOT NULL,
                land_value REAL,
                total_value REAL,
                use_code TEXT,
                source TEXT NOT NULL DEFAULT 'ingest',
                created_at TEXT NOT NULL,
                UNIQUE(parcel_id, snapshot_date)
            )
            """
        )
        self.conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_history_parcel_date "
            "ON history_snapshots(parcel_id, snapshot_date DESC)"
        )

        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS scores (
                parcel_id INTEGER PRIMARY KEY REFERENCES parcels(id) ON DELETE CASCADE,
                rezoning_probability REAL NOT NULL,
                investment_score REAL NOT NULL,
                land_value_yoy_change REAL,
                use_change INTEGER NOT NULL DEFAULT 0,
                undervaluation_pct REAL,
                explanations_json TEXT NOT NULL,
                features_json TEXT NOT NULL,
                model_version TEXT NOT NULL,
                computed_at TEXT NOT NULL
            )
            """
        )
        self.conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_scores_investment ON scores(investment_score DESC)"
        )

    # -- parcels -------------------------------------------------------------

    def upsert_parcels(self, parcels: Sequence[Parcel], *, updated_at: Optional[str] = None) -> Dict[str, int]:
        """Write a batch atomically; returns ``{pin: parcel_id}``.

        On conflict every mutable column is overwritten with the incoming
        value. Either the whole batch commits or nothing does.
        """

        if not parcels:
            return {}
        now = updated_at or utc_now_iso()
        jurisdiction = parcels[0].jurisdiction
        rows = [parcel_row(p, now) for p in parcels]
        self.conn.execute("BEGIN")
        try:
            self.conn.executemany(_UPSERT_PARCEL_SQL, rows)
            ids = self._parcel_ids(jurisdiction, [p.pin for p in parcels])
            self.conn.execute("COMMIT")
        except BaseException:
            self.conn.execute("ROLLBACK")
            raise
        return ids

    def _parcel_ids(self, jurisdiction: str, pins: Sequence[str]) -> Dict[str, int]:
        out: Dict[str, int] = {}
        pins = list(pins)
        for i in range(0, len(pins), 500):
            chunk = pins[i : i + 500]
            marks = ",".join("?" for _ in chunk)
            for row in self.conn.execute(
                f"SELECT id, pin FROM parcels WHERE jurisdiction=? AND pin IN ({marks})",
                (jurisdiction, *chunk),
            ):
                out[str(row["pin"])] = int(row["id"])
        return out

    def get_parcel(self, parcel_id: int) -> Optional[Dict[str, Any]]:
        row = self.conn.execute("SELECT * FROM parcels WHERE id=?", (int(parcel_id),)).fetchone()
        return _parcel_dict(row) if row else None

    def count_parcels(self, jurisdiction: str) -> Dict[str, int]:
        row = self.conn.execute(
            """
            SELECT COUNT(*) AS total,
                   SUM(CASE WHEN geometry_geojson IS NOT NULL THEN 1 ELSE 0 END) AS with_geometry
            FROM parcels WHERE jurisdiction=?
            """,
            (jurisdiction,),
        ).fetchone()
        return {"total": int(row["total"] or 0), "with_geometry": int(row["with_geometry"] or 0)}

    def median_land_value(self, jurisdiction: str) -> Optional[float]:
        values = [
            float(r[0])
            for r in self.conn.execute(
                "SELECT land_value FROM parcels WHERE jurisdiction=? AND land_value IS NOT NULL ORDER BY land_value",
                (jurisdiction,),
            )
        ]
        if not values:
            return None
        mid = len(values) // 2
        if len(values) % 2:
            return values[mid]
        return (values[mid - 1] + values[mid]) / 2.0

    def iter_scoring_inputs(self, jurisdiction: str) -> Iterator[Dict[str, Any]]:
        """Parcels that have at least one snapshot, with the columns scoring needs."""

        cur = self.conn.execute(
            """
            SELECT p.id, p.pin, p.jurisdiction, p.land_value, p.calc_area_acres, p.acreage,
                   p.deed_date, p.owner_type, p.use_code
            FROM parcels p
            WHERE p.jurisdiction=?
              AND EXISTS (SELECT 1 FROM history_snapshots h WHERE h.parcel_id = p.id)
            ORDER BY p.id
            """,
            (jurisdiction,),
        )
        for row in cur:
            yield dict(row)

    # -- history -------------------------------------------------------------

    def insert_snapshots(self, snapshots: Iterable[HistorySnapshot]) -> int:
        """Insert snapshots; an existing (parcel, date) row is left untouched."""

        now = utc_now_iso()
        rows = [
            (s.parcel_id, s.snapshot_date, s.land_value, s.total_value, s.use_code, s.source, now)
            for s in snapshots
        ]
        if not rows:
            return 0
        before = self.conn.total_changes
        self.conn.execute("BEGIN")
        try:
            self.conn.executemany(
                """
                INSERT INTO history_snapshots
                    (parcel_id, snapshot_date, land_value, total_value, use_code, source, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(parcel_id, snapshot_date) DO NOTHING
                """,
                rows,
            )
            self.conn.execute("COMMIT")
        except BaseException:
            self.conn.execute("ROLLBACK")
            raise
        return self.conn.total_changes - before

    def get_history(self, parcel_id: int, *, newest_first: bool = False) -> List[HistorySnapshot]:
        order = "DESC" if newest_first else "ASC"
        rows = self.conn.execute(
            f"""
            SELECT parcel_id, snapshot_date, land_value, total_value, use_code, source
            FROM history_snapshots WHERE parcel_id=? ORDER BY snapshot_date {order}
            """,
            (int(parcel_id),),
        ).fetchall()
        return [_snapshot(r) for r in rows]

    def iter_histories(self, jurisdiction: str) -> Iterator[Tuple[int, List[HistorySnapshot]]]:
        """Yield ``(parcel_id, history newest first)`` for one jurisdiction."""

        cur = self.conn.execute(
            """
            SELECT h.parcel_id, h.snapshot_date, h.land_value, h.total_value, h.use_code, h.source
            FROM history_snapshots h JOIN parcels p ON p.id = h.parcel_id
            WHERE p.jurisdiction=?
            ORDER BY h.parcel_id, h.snapshot_date DESC
            """,
            (jurisdiction,),
        )
        current_id: Optional[int] = None
        bucket: List[HistorySnapshot] = []
        for row in cur:
            pid = int(row["parcel_id"])
            if current_id is not None and pid != current_id:
                yield current_id, bucket
                bucket = []
            current_id = pid
            bucket.append(_snapshot(row))
        if current_id is not None:
            yield current_id, bucket

    def count_history(self, jurisdiction: str, snapshot_date: Optional[str] = None) -> int:
        sql = (
            "SELECT COUNT(*) FROM history_snapshots h JOIN parcels p ON p.id = h.parcel_id "
            "WHERE p.jurisdiction=?"
        )
        params: List[Any] = [jurisdiction]
        if snapshot_date:
            sql += " AND h.snapshot_date=?"
            params.append(snapshot_date)
        return int(self.conn.execute(sql, params).fetchone()[0])

    # -- scores --------------------------------------------------------------

    def upsert_scores(self, scores: Sequence[Score]) -> int:
        if not scores:
            return 0
        rows = [
            (
                s.parcel_id,
                float(s.rezoning_probability),
                float(s.investment_score),
                s.land_value_yoy_change,
                1 if s.use_change else 0,
                s.undervaluation_pct,
                s.explanations_json(),
                s.features_json(),
                s.model_version,
                s.computed_at,
            )
            for s in scores
        ]
        self.conn.execute("BEGIN")
        try:
            self.conn.executemany(
                """
                INSERT INTO scores (
                    parcel_id, rezoning_probability, investment_score, land_value_yoy_change,
                    use_change, undervaluation_pct, explanations_json, features_json,
                    model_version, computed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(parcel_id) DO UPDATE SET
                    rezoning_probability=excluded.rezoning_probability,
                    investment_score=excluded.investment_score,
                    land_value_yoy_change=excluded.land_value_yoy_change,
                    use_change=excluded.use_change,
                    undervaluation_pct=excluded.undervaluation_pct,
                    explanations_json=excluded.explanations_json,
                    features_json=excluded.features_json,
                    model_version=excluded.model_version,
                    computed_at=excluded.computed_at
                """,
                rows,
            )
            self.conn.execute("COMMIT")
        except BaseException:
            self.conn.execute("ROLLBACK")
            raise
        return len(rows)

    def get_score(self, parcel_id: int) -> Optional[Dict[str, Any]]:
        row = self.conn.execute("SELECT * FROM scores WHERE parcel_id=?", (int(parcel_id),)).fetchone()
        return _score_dict(row) if row else None

    def top_scores(
        self,
        *,
        jurisdiction: Optional[str] = None,
        min_investment_score: Optional[float] = None,
        min_rezoning_probability: Optional[float] = None,
        min_acres: Optional[float] = None,
        max_acres: Optional[float] = None,
        owner_type: Optional[str] = None,
        limit: int = 20,
    ) -> List[Dict[str, Any]]:
        where: List[str] = []
        params: List[Any] = []
        acres_expr = "COALESCE(NULLIF(p.calc_area_acres, 0), p.acreage)"
        if jurisdiction:
            where.append("p.jurisdiction = ?")
            params.append(jurisdiction)
        if min_investment_score is not None:
            where.append("s.investment_score >= ?")
            params.append(float(min_investment_score))
        if min_rezoning_probability is not None:
            where.append("s.rezoning_probability >= ?")
            params.append(float(min_rezoning_probability))
        if min_acres is not None:
            where.append(f"{acres_expr} >= ?")
            params.append(float(min_acres))
        if max_acres is not None:
            where.append(f"{acres_expr} <= ?")
            params.append(float(max_acres))
        if owner_type:
            where.append("p.owner_type = ?")
            params.append(owner_type)
        where_sql = ("WHERE " + " AND ".join(where)) if where else ""
        params.append(max(1, int(limit)))
        rows = self.conn.execute(
            f"""
            SELECT p.id, p.pin, p.jurisdiction, p.address, p.city, p.land_value,
                   {acres_expr} AS acres, p.owner_type, p.use_code,
                   s.investment_score, s.rezoning_probability, s.land_value_yoy_change,
                   s.undervaluation_pct
            FROM scores s JOIN parcels p ON p.id = s.parcel_id
            {where_sql}
            ORDER BY s.investment_score DESC, p.id ASC
            LIMIT ?
            """,
            params,
        ).fetchall()
        return [dict(r) for r in rows]

    # -- ingestion jobs ------------------------------------------------------

    def get_open_job(self, jurisdiction: str) -> Optional[IngestionJob]:
        row = self.conn.execute(
            "SELECT * FROM ingestion_jobs WHERE jurisdiction=? AND completed=0 LIMIT 1",
            (jurisdiction,),
        ).fetchone()
        return _job(row) if row else None

    def get_job(self, job_id: int) -> Optional[IngestionJob]:
        row = self.conn.execute("SELECT * FROM ingestion_jobs WHERE id=?", (int(job_id),)).fetchone()
        return _job(row) if row else None

    def list_jobs(self, jurisdiction: Optional[str] = None, limit: int = 10) -> List[IngestionJob]:
        if jurisdiction:
            rows = self.conn.execute(
                "SELECT * FROM ingestion_jobs WHERE jurisdiction=? ORDER BY id DESC LIMIT ?",
                (jurisdiction, int(limit)),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM ingestion_jobs ORDER BY id DESC LIMIT ?", (int(limit),)
            ).fetchall()
        return [_job(r) for r in rows]

    def acquire_job_lease(
        self,
        *,
        jurisdiction: str,
        owner: str,
        now_ts: int,
        ttl_seconds: int,
        now_iso: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Find-or-create the open job for a jurisdiction and take its lease.

        Returns ``{"acquired": bool, "created": bool, "job": IngestionJob}``.
        A lease held by someone else with a heartbeat newer than the TTL is
        left alone (``acquired`` False).
        """

        now = now_iso or utc_now_iso()
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            row = self.conn.execute(
                "SELECT * FROM ingestion_jobs WHERE jurisdiction=? AND completed=0 LIMIT 1",
                (jurisdiction,),
            ).fetchone()
            if row is None:
                cur = self.conn.execute(
                    """
                    INSERT INTO ingestion_jobs
                        (jurisdiction, status, cursor, started_at, updated_at, lease_owner, lease_heartbeat_ts)
                    VALUES (?, ?, 0, ?, ?, ?, ?)
                    """,
                    (jurisdiction, JOB_RUNNING, now, now, owner, int(now_ts)),
                )
                job_id, acquired, created = int(cur.lastrowid), True, True
            else:
                job_id, created = int(row["id"]), False
                held_by = row["lease_owner"]
                heartbeat = int(row["lease_heartbeat_ts"] or 0)
                acquired = not (
                    bool(held_by) and held_by != owner and heartbeat >= int(now_ts) - int(ttl_seconds)
                )
                if acquired:
                    self.conn.execute(
                        """
                        UPDATE ingestion_jobs
                        SET status=?, lease_owner=?, lease_heartbeat_ts=?, updated_at=?, error_json=NULL
                        WHERE id=?
                        """,
                        (JOB_RUNNING, owner, int(now_ts), now, job_id),
                    )
        except BaseException:
            self.conn.execute("ROLLBACK")
            raise
        self.conn.execute("COMMIT")
        return {"acquired": acquired, "created": created, "job": self.get_job(job_id)}

    def checkpoint_job(
        self,
        job: IngestionJob,
        *,
        owner: str,
        now_ts: int,
        now_iso: Optional[str] = None,
    ) -> bool:
        """Persist progress and refresh the heartbeat; False when the lease was lost."""

        cur = self.conn.execute(
            """
            UPDATE ingestion_jobs
            SET cursor=?, records_processed=?, records_failed=?, records_with_geometry=?,
                history_written=?, pages_processed=?, null_audit_json=?, updated_at=?,
                lease_heartbeat_ts=?
            WHERE id=? AND lease_owner=?
            """,
            (
                int(job.cursor),
                int(job.records_processed),
                int(job.records_failed),
                int(job.records_with_geometry),
                int(job.history_written),
                int(job.pages_processed),
                json.dumps(job.null_audit or {}, sort_keys=True),
                now_iso or utc_now_iso(),
                int(now_ts),
                int(job.id),
                owner,
            ),
        )
        return cur.rowcount == 1

    def finish_job(
        self,
        job: IngestionJob,
        *,
        owner: str,
        status: str,
        error: Optional[Dict[str, Any]] = None,
        median_land_value: Optional[float] = None,
        now_iso: Optional[str] = None,
    ) -> bool:
        """Close out an invocation: release the lease and record the outcome.

        ``completed`` status flips the completion flag; any other status keeps
        the job open so the next invocation resumes it. Returns False when
        ``owner`` no longer holds the lease and nothing was written.
        """

        now = now_iso or utc_now_iso()
        done = status == JOB_COMPLETED
        cur = self.conn.execute(
            """
            UPDATE ingestion_jobs
            SET status=?, completed=?, completed_at=?, median_land_value=COALESCE(?, median_land_value),
                error_json=?, updated_at=?, lease_owner=NULL, lease_heartbeat_ts=NULL
            WHERE id=? AND lease_owner=?
            """,
            (
                status,
                1 if done else 0,
                now if done else None,
                median_land_value,
                json.dumps(error, sort_keys=True, default=str) if error else None,
                now,
                int(job.id),
                owner,
            ),
        )
        return cur.rowcount == 1


def _parcel_dict(row: sqlite3.Row) -> Dict[str, Any]:
    out = dict(row)
    geom = out.pop("geometry_geojson", None)
    out["geometry"] = json.loads(geom) if geom else None
    raw = out.pop("raw_json", None)
    out["raw"] = json.loads(raw) if raw else {}
    return out


def _score_dict(row: sqlite3.Row) -> Dict[str, Any]:
    out = dict(row)
    out["use_change"] = bool(out.get("use_change"))
    out["explanations"] = json.loads(out.pop("explanations_json") or "{}")
    out["features"] = json.loads(out.pop("features_json") or "{}")
    return out


def _snapshot(row: sqlite3.Row) -> HistorySnapshot:
    return HistorySnapshot(
        parcel_id=int(row["parcel_id"]),
        snapshot_date=str(row["snapshot_date"]),
        land_value=row["land_value"],
        total_value=row["total_value"],
        use_code=row["use_code"],
        source=row["source"] or "ingest",
    )


def _job(row: sqlite3.Row) -> IngestionJob:
    return IngestionJob(
        id=int(row["id"]),
        jurisdiction=str(row["jurisdiction"]),
        status=str(row["status"]),
        cursor=int(row["cursor"] or 0),
        records_processed=int(row["records_processed"] or 0),
        records_failed=int(row["records_failed"] or 0),
        records_with_geometry=int(row["records_with_geometry"] or 0),
        history_written=int(row["history_written"] or 0),
        pages_processed=int(row["pages_processed"] or 0),
        completed=bool(row["completed"]),
        started_at=row["started_at"],
        updated_at=row["updated_at"],
        completed_at=row["completed_at"],
        median_land_value=row["median_land_value"],
        null_audit=json.loads(row["null_audit_json"] or "{}"),
        error=json.loads(row["error_json"]) if row["error_json"] else None,
        lease_owner=row["lease_owner"],
    )


