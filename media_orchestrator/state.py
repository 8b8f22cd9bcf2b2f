"""
State Persistence: async SQLite-backed task-group state for crash recovery
==========================================================================
Saves a task group after every status transition so a restarted process can
re-attach to provider jobs that were still running. Health records and
per-category model priorities live in the same database.

Serialization: JSON (not pickle), safe for untrusted DB files,
human-readable, and grep-able for debugging.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Optional

import aiosqlite

from .models import (
    ACTIVE_STATUSES, GenerationConfig, GroupStatus, HealthRecord, ModelCategory,
    Quality, Shot, Task, TaskGroup, TaskState,
)

logger = logging.getLogger("media_orchestrator.state")

DEFAULT_STATE_PATH = Path(".media_orchestrator") / "state.db"


# ─────────────────────────────────────────────
# JSON serializers / deserializers
# ─────────────────────────────────────────────

def _config_to_dict(c: GenerationConfig) -> dict:
    return {
        "aspect_ratio": c.aspect_ratio,
        "duration": c.duration,
        "quality": c.quality.value,
    }


def _config_from_dict(d: dict) -> GenerationConfig:
    return GenerationConfig(
        aspect_ratio=d.get("aspect_ratio", "16:9"),
        duration=d.get("duration", "15"),
        quality=Quality(d.get("quality", "standard")),
    )


def _shot_to_dict(s: Shot) -> dict:
    return {
        "id": s.id,
        "duration": s.duration,
        "shot_number": s.shot_number,
        "scene": s.scene,
        "characters": list(s.characters),
        "shot_size": s.shot_size,
        "camera_angle": s.camera_angle,
        "camera_movement": s.camera_movement,
        "visual_description": s.visual_description,
        "dialogue": s.dialogue,
        "visual_effects": s.visual_effects,
        "audio_effects": s.audio_effects,
    }


def _shot_from_dict(d: dict) -> Shot:
    return Shot(
        id=d["id"],
        duration=d.get("duration", 0),
        shot_number=d.get("shot_number", 0),
        scene=d.get("scene", ""),
        characters=tuple(d.get("characters", ())),
        shot_size=d.get("shot_size", ""),
        camera_angle=d.get("camera_angle", ""),
        camera_movement=d.get("camera_movement", ""),
        visual_description=d.get("visual_description", ""),
        dialogue=d.get("dialogue", ""),
        visual_effects=d.get("visual_effects", ""),
        audio_effects=d.get("audio_effects", ""),
    )


def _task_to_dict(t: Task) -> dict:
    return {
        "provider_task_id": t.provider_task_id,
        "provider": t.provider,
        "model_id": t.model_id,
        "submitted_at": t.submitted_at,
        "state": t.state.value,
        "progress": t.progress,
        "result_url": t.result_url,
        "error": t.error,
    }


def _task_from_dict(d: dict) -> Task:
    return Task(
        provider_task_id=d["provider_task_id"],
        provider=d["provider"],
        model_id=d["model_id"],
        submitted_at=d["submitted_at"],
        state=TaskState(d.get("state", "queued")),
        progress=d.get("progress", 0),
        result_url=d.get("result_url"),
        error=d.get("error"),
    )


def _group_to_dict(g: TaskGroup) -> dict:
    return {
        "id": g.id,
        "batch_id": g.batch_id,
        "task_number": g.task_number,
        "shot_ids": g.shot_ids,
        "shots": [_shot_to_dict(s) for s in g.shots],
        "total_duration": g.total_duration,
        "config": _config_to_dict(g.config),
        "prompt": g.prompt,
        "reference_media": g.reference_media,
        "status": g.status.value,
        "progress": g.progress,
        "model_id": g.model_id,
        "provider": g.provider,
        "result_url": g.result_url,
        "error": g.error,
        "tasks": [_task_to_dict(t) for t in g.tasks],
        "created_at": g.created_at,
        "updated_at": g.updated_at,
    }


def _group_from_dict(d: dict) -> TaskGroup:
    return TaskGroup(
        id=d["id"],
        batch_id=d.get("batch_id", ""),
        task_number=d["task_number"],
        shot_ids=d.get("shot_ids", []),
        shots=[_shot_from_dict(s) for s in d.get("shots", [])],
        total_duration=d.get("total_duration", 0),
        config=_config_from_dict(d.get("config", {})),
        prompt=d.get("prompt", ""),
        reference_media=d.get("reference_media"),
        status=GroupStatus(d.get("status", "idle")),
        progress=d.get("progress", 0),
        model_id=d.get("model_id"),
        provider=d.get("provider"),
        result_url=d.get("result_url"),
        error=d.get("error"),
        tasks=[_task_from_dict(t) for t in d.get("tasks", [])],
        created_at=d.get("created_at", time.time()),
        updated_at=d.get("updated_at", time.time()),
    )


# ─────────────────────────────────────────────
# StateManager (async)
# ─────────────────────────────────────────────

class StateManager:
    """
    Async aiosqlite-backed store.
    Persistent connection with one-time schema init.
    """

    def __init__(self, db_path: Path = DEFAULT_STATE_PATH):
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db_path = str(db_path)
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock: Optional[asyncio.Lock] = None  # lazy: created inside event loop

    async def _get_conn(self) -> aiosqlite.Connection:
        if self._lock is None:
            self._lock = asyncio.Lock()
        if self._conn is None:
            async with self._lock:
                if self._conn is None:
                    conn = await aiosqlite.connect(self._db_path)
                    await conn.execute("PRAGMA journal_mode=WAL")
                    await conn.executescript("""
                        CREATE TABLE IF NOT EXISTS task_groups (
                            group_id   TEXT PRIMARY KEY,
                            batch_id   TEXT NOT NULL,
                            state      TEXT NOT NULL,
                            status     TEXT NOT NULL,
                            created_at REAL NOT NULL,
                            updated_at REAL NOT NULL
                        );
                        CREATE INDEX IF NOT EXISTS idx_groups_batch
                            ON task_groups(batch_id);
                        CREATE TABLE IF NOT EXISTS health_records (
                            model_id             TEXT PRIMARY KEY,
                            attempts             INTEGER NOT NULL,
                            failures             INTEGER NOT NULL,
                            consecutive_failures INTEGER NOT NULL,
                            last_failure_at      REAL
                        );
                        CREATE TABLE IF NOT EXISTS priorities (
                            category   TEXT PRIMARY KEY,
                            model_ids  TEXT NOT NULL,
                            updated_at REAL NOT NULL
                        );
                        CREATE TABLE IF NOT EXISTS resume_ledger (
                            session_id       TEXT NOT NULL,
                            provider_task_id TEXT NOT NULL,
                            group_id         TEXT NOT NULL,
                            created_at       REAL NOT NULL,
                            PRIMARY KEY (session_id, provider_task_id)
                        );
                    """)
                    await conn.commit()
                    self._conn = conn
        return self._conn

    # ── Task groups ──────────────────────────────────────────────────────────

    async def save_group(self, group: TaskGroup) -> None:
        blob = json.dumps(_group_to_dict(group))
        db = await self._get_conn()
        await db.execute(
            """INSERT OR REPLACE INTO task_groups
               (group_id, batch_id, state, status, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (group.id, group.batch_id, blob, group.status.value,
             group.created_at, group.updated_at)
        )
        await db.commit()

    async def save_groups(self, groups: list[TaskGroup]) -> None:
        db = await self._get_conn()
        await db.executemany(
            """INSERT OR REPLACE INTO task_groups
               (group_id, batch_id, state, status, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            [(g.id, g.batch_id, json.dumps(_group_to_dict(g)), g.status.value,
              g.created_at, g.updated_at) for g in groups]
        )
        await db.commit()

    async def load_group(self, group_id: str) -> Optional[TaskGroup]:
        db = await self._get_conn()
        async with db.execute(
            "SELECT state FROM task_groups WHERE group_id = ?", (group_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row:
            return _group_from_dict(json.loads(row[0]))
        return None

    async def load_groups(self, batch_id: Optional[str] = None) -> list[TaskGroup]:
        """Groups in task-number order, optionally limited to one batch."""
        db = await self._get_conn()
        if batch_id is None:
            query, params = "SELECT state FROM task_groups", ()
        else:
            query, params = "SELECT state FROM task_groups WHERE batch_id = ?", (batch_id,)
        async with db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        groups = [_group_from_dict(json.loads(r[0])) for r in rows]
        groups.sort(key=lambda g: (g.batch_id, g.task_number))
        return groups

    async def load_in_flight(self, batch_id: Optional[str] = None) -> list[TaskGroup]:
        """Groups persisted in uploading, queued or processing."""
        db = await self._get_conn()
        marks = ",".join("?" for _ in ACTIVE_STATUSES)
        query = f"SELECT state FROM task_groups WHERE status IN ({marks})"
        params: tuple = tuple(s.value for s in ACTIVE_STATUSES)
        if batch_id is not None:
            query += " AND batch_id = ?"
            params += (batch_id,)
        async with db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        groups = [_group_from_dict(json.loads(r[0])) for r in rows]
        groups.sort(key=lambda g: (g.batch_id, g.task_number))
        return groups

    async def list_batches(self) -> list[dict]:
        db = await self._get_conn()
        async with db.execute(
            "SELECT batch_id, COUNT(*), MIN(created_at), MAX(updated_at) "
            "FROM task_groups GROUP BY batch_id ORDER BY MAX(updated_at) DESC"
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            {"batch_id": r[0], "groups": r[1],
             "created_at": r[2], "updated_at": r[3]}
            for r in rows
        ]

    async def delete_batch(self, batch_id: str) -> None:
        db = await self._get_conn()
        await db.execute(
            "DELETE FROM task_groups WHERE batch_id = ?", (batch_id,)
        )
        await db.commit()

    # ── Health records ───────────────────────────────────────────────────────

    async def save_health(self, record: HealthRecord) -> None:
        db = await self._get_conn()
        await db.execute(
            """INSERT OR REPLACE INTO health_records
               (model_id, attempts, failures, consecutive_failures, last_failure_at)
               VALUES (?, ?, ?, ?, ?)""",
            (record.model_id, record.attempts, record.failures,
             record.consecutive_failures, record.last_failure_at)
        )
        await db.commit()

    async def load_health(self) -> dict[str, HealthRecord]:
        db = await self._get_conn()
        async with db.execute(
            "SELECT model_id, attempts, failures, consecutive_failures, last_failure_at "
            "FROM health_records"
        ) as cursor:
            rows = await cursor.fetchall()
        return {
            r[0]: HealthRecord(model_id=r[0], attempts=r[1], failures=r[2],
                               consecutive_failures=r[3], last_failure_at=r[4])
            for r in rows
        }

    async def delete_health(self, model_id: Optional[str] = None) -> None:
        db = await self._get_conn()
        if model_id is None:
            await db.execute("DELETE FROM health_records")
        else:
            await db.execute(
                "DELETE FROM health_records WHERE model_id = ?", (model_id,)
            )
        await db.commit()

    # ── Priorities ───────────────────────────────────────────────────────────

    async def save_priority(self, category: ModelCategory, model_ids: list[str]) -> None:
        db = await self._get_conn()
        await db.execute(
            "INSERT OR REPLACE INTO priorities (category, model_ids, updated_at) "
            "VALUES (?, ?, ?)",
            (category.value, json.dumps(model_ids), time.time())
        )
        await db.commit()

    async def load_priorities(self) -> dict[ModelCategory, list[str]]:
        db = await self._get_conn()
        async with db.execute("SELECT category, model_ids FROM priorities") as cursor:
            rows = await cursor.fetchall()
        result: dict[ModelCategory, list[str]] = {}
        for category, blob in rows:
            try:
                result[ModelCategory(category)] = json.loads(blob)
            except ValueError:
                logger.warning(f"Ignoring unreadable priority row for {category!r}")
        return result

    async def delete_priority(self, category: ModelCategory) -> None:
        db = await self._get_conn()
        await db.execute(
            "DELETE FROM priorities WHERE category = ?", (category.value,)
        )
        await db.commit()

    # ── Resume ledger ────────────────────────────────────────────────────────

    async def mark_resumed(self, session_id: str, provider_task_id: str,
                           group_id: str) -> bool:
        """
        Record that `session_id` has taken over `provider_task_id`.
        Returns False if it was already recorded (the caller must not probe again).
        """
        db = await self._get_conn()
        cursor = await db.execute(
            "INSERT OR IGNORE INTO resume_ledger "
            "(session_id, provider_task_id, group_id, created_at) VALUES (?, ?, ?, ?)",
            (session_id, provider_task_id, group_id, time.time())
        )
        await db.commit()
        return cursor.rowcount == 1

    async def close(self):
        """Close the aiosqlite connection gracefully before the event loop shuts down."""
        if self._conn is not None:
            try:
                await self._conn.close()
                # Yield control so the aiosqlite background thread can finish
                # its final callbacks before asyncio.run() closes the loop.
                await asyncio.sleep(0)
            finally:
                self._conn = None
