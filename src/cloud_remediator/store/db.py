"""SQLite access layer for plans, execution reports, and manual work items."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Mapping, Sequence

from cloud_remediator.domain.models import RemediationPlan
from cloud_remediator.utils.serialization import json_default
from cloud_remediator.utils.time import utc_now_iso

_SqlValue = str | bytes | int | float | None
_SqlParams = Sequence[_SqlValue] | Mapping[str, _SqlValue]


class SqliteStore:
    """Plan store, execution report sink, and manual work item sink.

    Only final execution reports are persisted. Rollback points of an
    in-flight execution live in process memory and are lost on a crash.
    """

    def __init__(self, path: str, wal: bool = True) -> None:
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._closed = False
        if wal and path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS plans (
                plan_id TEXT PRIMARY KEY,
                finding_id TEXT,
                payload TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS execution_reports (
                execution_id TEXT PRIMARY KEY,
                plan_id TEXT NOT NULL,
                status TEXT NOT NULL,
                risk_score REAL,
                completed_count INTEGER NOT NULL,
                failed_count INTEGER NOT NULL,
                total_duration_ms INTEGER,
                report TEXT NOT NULL,
                recorded_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS work_items (
                work_item_id TEXT PRIMARY KEY,
                task_id TEXT NOT NULL,
                title TEXT,
                priority TEXT,
                assignee TEXT,
                status TEXT NOT NULL,
                payload TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_execution_reports_plan_id
                ON execution_reports(plan_id);
            CREATE INDEX IF NOT EXISTS idx_work_items_status ON work_items(status);
            """
        )
        self._conn.commit()

    def execute(
        self,
        query: str,
        params: _SqlParams,
    ) -> None:
        with self._lock:
            self._conn.execute(query, params)
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._conn.close()
            self._closed = True

    def fetch_one(
        self,
        query: str,
        params: _SqlParams,
    ) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.execute(query, params)
            return cur.fetchone()

    def fetch_all(
        self,
        query: str,
        params: _SqlParams,
    ) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.execute(query, params)
            return cur.fetchall()

    def save_plan(self, plan: RemediationPlan) -> None:
        self.execute(
            """
            INSERT OR REPLACE INTO plans (plan_id, finding_id, payload, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (
                plan.id,
                plan.finding_id,
                plan.model_dump_json(),
                utc_now_iso(),
            ),
        )

    def load_plan(self, plan_id: str) -> RemediationPlan | None:
        row = self.fetch_one("SELECT payload FROM plans WHERE plan_id = ?", (plan_id,))
        if row is None:
            return None
        return RemediationPlan.model_validate_json(row["payload"])

    async def get_plan(self, plan_id: str) -> RemediationPlan | None:
        return await asyncio.to_thread(self.load_plan, plan_id)

    def save_execution_report(self, report: dict[str, Any]) -> None:
        risk = report.get("risk_assessment") or {}
        self.execute(
            """
            INSERT OR REPLACE INTO execution_reports (
                execution_id, plan_id, status, risk_score, completed_count,
                failed_count, total_duration_ms, report, recorded_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                report["execution_id"],
                report["plan_id"],
                report["status"],
                risk.get("overall_risk_score"),
                len(report.get("completed_tasks") or []),
                len(report.get("failed_tasks") or []),
                report.get("total_duration_ms"),
                json.dumps(report, ensure_ascii=True, default=json_default),
                utc_now_iso(),
            ),
        )

    def get_execution_report(self, execution_id: str) -> dict[str, Any] | None:
        row = self.fetch_one(
            "SELECT report FROM execution_reports WHERE execution_id = ?", (execution_id,)
        )
        if row is None:
            return None
        return json.loads(row["report"])

    async def record_execution(self, report: dict[str, Any]) -> None:
        await asyncio.to_thread(self.save_execution_report, report)

    def save_work_item(self, work_item: dict[str, Any]) -> None:
        self.execute(
            """
            INSERT OR REPLACE INTO work_items (
                work_item_id, task_id, title, priority, assignee, status, payload, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                work_item["id"],
                work_item["task_id"],
                work_item.get("title"),
                work_item.get("priority"),
                work_item.get("assignee"),
                work_item.get("status", "pending"),
                json.dumps(work_item, ensure_ascii=True, default=json_default),
                work_item.get("created_at") or utc_now_iso(),
            ),
        )

    def list_work_items(self, status: str | None = None) -> list[dict[str, Any]]:
        if status is None:
            rows = self.fetch_all("SELECT payload FROM work_items ORDER BY created_at", ())
        else:
            rows = self.fetch_all(
                "SELECT payload FROM work_items WHERE status = ? ORDER BY created_at",
                (status,),
            )
        return [json.loads(row["payload"]) for row in rows]

    async def create_work_item(self, work_item: dict[str, Any]) -> None:
        await asyncio.to_thread(self.save_work_item, work_item)
