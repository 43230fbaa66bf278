from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module provides a SQLite job store; message payloads are stored as JSON.
"""

import json
from typing import Mapping, Optional

import aiosqlite

from ..models import (
    ExternalApiCallRecord,
    InferenceReceipt,
    Job,
    MessagePayload,
    StoredMessage,
    decode_payload,
    encode_payload,
    now_ms,
)
from .base import JobStore


class SQLiteJobStore(JobStore):
    """Persistent local job store backed by SQLite."""

    def __init__(
        self,
        path: str = "agentrun.sqlite3",
        *,
        cost_limits_usd: Mapping[str, float] | None = None,
        default_cost_limit_usd: float | None = None,
        warn_fraction: float = 0.8,
    ) -> None:
        super().__init__(
            cost_limits_usd=cost_limits_usd,
            default_cost_limit_usd=default_cost_limit_usd,
            warn_fraction=warn_fraction,
        )
        self.path = path
        self._connection: aiosqlite.Connection | None = None

    async def setup(self) -> None:
        self._connection = await aiosqlite.connect(self.path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA synchronous=NORMAL;")
        await self._connection.execute("PRAGMA foreign_keys=ON;")
        await self._create_tables()
        await self._connection.commit()
        await super().setup()

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
        await super().close()

    def _db(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError("SQLiteJobStore is not initialized. Call setup() first.")
        return self._connection

    async def _create_tables(self) -> None:
        db = self._db()
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS jobs (
              id TEXT PRIMARY KEY,
              agent_id TEXT NOT NULL,
              work_item_id TEXT,
              status TEXT NOT NULL,
              created_at INTEGER NOT NULL,
              started_at INTEGER,
              completed_at INTEGER,
              error_text TEXT,
              final_response TEXT
            );
            """
        )
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS messages (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              job_id TEXT NOT NULL REFERENCES jobs(id),
              role TEXT NOT NULL,
              payload_json TEXT NOT NULL,
              created_at INTEGER NOT NULL
            );
            """
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_job ON messages(job_id, id);"
        )
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS inference_receipts (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              job_id TEXT NOT NULL,
              agent_id TEXT NOT NULL,
              turn INTEGER,
              model TEXT NOT NULL,
              attempt_kind TEXT NOT NULL,
              attempt_index INTEGER NOT NULL,
              input_tokens INTEGER NOT NULL,
              output_tokens INTEGER NOT NULL,
              cost_usd REAL,
              tool_call_names_json TEXT NOT NULL,
              finish_reason TEXT,
              is_fallback INTEGER NOT NULL,
              duration_ms INTEGER NOT NULL,
              model_span_id TEXT,
              error TEXT,
              created_at INTEGER NOT NULL
            );
            """
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_receipts_agent ON inference_receipts(agent_id);"
        )
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS external_api_calls (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              job_id TEXT NOT NULL,
              agent_id TEXT NOT NULL,
              tool_call_id TEXT NOT NULL,
              provider TEXT NOT NULL,
              operation TEXT NOT NULL,
              cost_usd REAL NOT NULL,
              metadata_json TEXT NOT NULL,
              created_at INTEGER NOT NULL
            );
            """
        )

    @staticmethod
    def _row_to_job(row: aiosqlite.Row) -> Job:
        return Job(
            id=row["id"],
            agent_id=row["agent_id"],
            work_item_id=row["work_item_id"],
            status=row["status"],
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            error_text=row["error_text"],
            final_response=row["final_response"],
        )

    async def get_job(self, job_id: str) -> Optional[Job]:
        self._ensure_setup()
        async with self._db().execute("SELECT * FROM jobs WHERE id = ?", (job_id,)) as cur:
            row = await cur.fetchone()
        return self._row_to_job(row) if row is not None else None

    async def _insert_job(self, job: Job) -> None:
        self._ensure_setup()
        db = self._db()
        await db.execute(
            """
            INSERT INTO jobs (id, agent_id, work_item_id, status, created_at,
                              started_at, completed_at, error_text, final_response)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                job.id,
                job.agent_id,
                job.work_item_id,
                job.status,
                job.created_at,
                job.started_at,
                job.completed_at,
                job.error_text,
                job.final_response,
            ),
        )
        await db.commit()

    async def _replace_job(self, job: Job) -> None:
        self._ensure_setup()
        db = self._db()
        await db.execute(
            """
            UPDATE jobs
               SET status = ?, started_at = ?, completed_at = ?,
                   error_text = ?, final_response = ?
             WHERE id = ?
            """,
            (
                job.status,
                job.started_at,
                job.completed_at,
                job.error_text,
                job.final_response,
                job.id,
            ),
        )
        await db.commit()

    async def _insert_message(self, job_id: str, payload: MessagePayload) -> StoredMessage:
        self._ensure_setup()
        db = self._db()
        created_at = now_ms()
        cur = await db.execute(
            "INSERT INTO messages (job_id, role, payload_json, created_at) VALUES (?, ?, ?, ?)",
            (job_id, payload.kind, encode_payload(payload), created_at),
        )
        message_id = cur.lastrowid
        await cur.close()
        await db.commit()
        return StoredMessage(id=int(message_id), job_id=job_id, payload=payload, created_at=created_at)

    async def list_messages_by_job(self, job_id: str) -> list[StoredMessage]:
        self._ensure_setup()
        async with self._db().execute(
            "SELECT id, job_id, payload_json, created_at FROM messages WHERE job_id = ? ORDER BY id ASC",
            (job_id,),
        ) as cur:
            rows = await cur.fetchall()
        return [
            StoredMessage(
                id=row["id"],
                job_id=row["job_id"],
                payload=decode_payload(row["payload_json"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    async def _replace_message_payload(self, message_id: int, payload: MessagePayload) -> None:
        self._ensure_setup()
        db = self._db()
        await db.execute(
            "UPDATE messages SET payload_json = ? WHERE id = ?",
            (encode_payload(payload), message_id),
        )
        await db.commit()

    async def record_inference_receipt(self, receipt: InferenceReceipt) -> None:
        self._ensure_setup()
        db = self._db()
        await db.execute(
            """
            INSERT INTO inference_receipts (
              job_id, agent_id, turn, model, attempt_kind, attempt_index,
              input_tokens, output_tokens, cost_usd, tool_call_names_json,
              finish_reason, is_fallback, duration_ms, model_span_id, error, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                receipt.job_id,
                receipt.agent_id,
                receipt.turn,
                receipt.model,
                receipt.attempt_kind,
                receipt.attempt_index,
                receipt.input_tokens,
                receipt.output_tokens,
                receipt.cost_usd,
                json.dumps(receipt.tool_call_names),
                receipt.finish_reason,
                int(receipt.is_fallback),
                receipt.duration_ms,
                receipt.model_span_id,
                receipt.error,
                receipt.created_at,
            ),
        )
        await db.commit()

    async def list_inference_receipts(self, job_id: str) -> list[InferenceReceipt]:
        self._ensure_setup()
        async with self._db().execute(
            "SELECT * FROM inference_receipts WHERE job_id = ? ORDER BY id ASC",
            (job_id,),
        ) as cur:
            rows = await cur.fetchall()
        return [
            InferenceReceipt(
                job_id=row["job_id"],
                agent_id=row["agent_id"],
                turn=row["turn"],
                model=row["model"],
                attempt_kind=row["attempt_kind"],
                attempt_index=row["attempt_index"],
                input_tokens=row["input_tokens"],
                output_tokens=row["output_tokens"],
                cost_usd=row["cost_usd"],
                tool_call_names=json.loads(row["tool_call_names_json"]),
                finish_reason=row["finish_reason"],
                is_fallback=bool(row["is_fallback"]),
                duration_ms=row["duration_ms"],
                model_span_id=row["model_span_id"],
                error=row["error"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    async def record_external_api_cost(self, record: ExternalApiCallRecord) -> None:
        self._ensure_setup()
        db = self._db()
        await db.execute(
            """
            INSERT INTO external_api_calls (
              job_id, agent_id, tool_call_id, provider, operation,
              cost_usd, metadata_json, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.job_id,
                record.agent_id,
                record.tool_call_id,
                record.provider,
                record.operation,
                record.cost_usd,
                json.dumps(record.metadata, default=str),
                record.created_at,
            ),
        )
        await db.commit()

    async def list_external_api_costs(self, job_id: str) -> list[ExternalApiCallRecord]:
        self._ensure_setup()
        async with self._db().execute(
            "SELECT * FROM external_api_calls WHERE job_id = ? ORDER BY id ASC",
            (job_id,),
        ) as cur:
            rows = await cur.fetchall()
        return [
            ExternalApiCallRecord(
                job_id=row["job_id"],
                agent_id=row["agent_id"],
                tool_call_id=row["tool_call_id"],
                provider=row["provider"],
                operation=row["operation"],
                cost_usd=row["cost_usd"],
                metadata=json.loads(row["metadata_json"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    async def total_cost_for_agent(self, agent_id: str) -> float:
        self._ensure_setup()
        db = self._db()
        async with db.execute(
            "SELECT COALESCE(SUM(cost_usd), 0) AS total FROM inference_receipts WHERE agent_id = ?",
            (agent_id,),
        ) as cur:
            receipts_row = await cur.fetchone()
        async with db.execute(
            "SELECT COALESCE(SUM(cost_usd), 0) AS total FROM external_api_calls WHERE agent_id = ?",
            (agent_id,),
        ) as cur:
            external_row = await cur.fetchone()
        return float(receipts_row["total"]) + float(external_row["total"])
