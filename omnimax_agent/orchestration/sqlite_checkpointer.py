"""SQLite checkpointer for the assistant workflow.

Stores one immutable row per (thread, checkpoint) with a pointer to the
checkpoint the run started from, so each thread forms a parent chain that
can be walked newest-first. Checkpoint ids are LangGraph's time-sortable
identifiers; the latest checkpoint is the one with the greatest id.
"""

from __future__ import annotations

import asyncio
import logging
import random
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Iterator, Sequence

from langgraph.checkpoint.base import (
    BaseCheckpointSaver,
    ChannelVersions,
    Checkpoint,
    CheckpointMetadata,
    CheckpointTuple,
    RunnableConfig,
    WRITES_IDX_MAP,
    get_checkpoint_id,
    get_checkpoint_metadata,
)
from langgraph.constants import START

from omnimax_agent.orchestration.errors import CheckpointWriteError
from omnimax_agent.orchestration.state import TRANSIENT_CHANNELS

logger = logging.getLogger(__name__)

_EXHAUSTED = object()


def _redact_input(channel: str, value: Any) -> Any:
    """Drop transient fields from a raw graph input before it is stored."""
    if channel == START and isinstance(value, dict):
        return {key: item for key, item in value.items() if key not in TRANSIENT_CHANNELS}
    return value


class LocalSqliteSaver(BaseCheckpointSaver[str]):
    """SQLite-backed checkpoint saver for local persistence.

    Reads that fail at the storage layer are logged and reported as "no
    checkpoint"; writes that fail raise CheckpointWriteError.
    """

    def __init__(self, db_path: Path, *, serde: Any | None = None) -> None:
        super().__init__(serde=serde)
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_db()

    @contextmanager
    def _get_conn(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS checkpoints (
                    thread_id TEXT NOT NULL,
                    checkpoint_ns TEXT NOT NULL,
                    checkpoint_id TEXT NOT NULL,
                    parent_checkpoint_id TEXT,
                    checkpoint_type TEXT NOT NULL,
                    checkpoint_blob BLOB NOT NULL,
                    metadata_type TEXT NOT NULL,
                    metadata_blob BLOB NOT NULL,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (thread_id, checkpoint_ns, checkpoint_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS writes (
                    thread_id TEXT NOT NULL,
                    checkpoint_ns TEXT NOT NULL,
                    checkpoint_id TEXT NOT NULL,
                    task_id TEXT NOT NULL,
                    write_idx INTEGER NOT NULL,
                    channel TEXT NOT NULL,
                    value_type TEXT NOT NULL,
                    value_blob BLOB NOT NULL,
                    task_path TEXT,
                    PRIMARY KEY (thread_id, checkpoint_ns, checkpoint_id, task_id, write_idx)
                )
                """
            )
            conn.commit()

    def _row_to_tuple(self, conn: sqlite3.Connection, row: sqlite3.Row) -> CheckpointTuple:
        checkpoint = self.serde.loads_typed((row["checkpoint_type"], row["checkpoint_blob"]))
        metadata = self.serde.loads_typed((row["metadata_type"], row["metadata_blob"]))

        writes_rows = conn.execute(
            """
            SELECT task_id, channel, value_type, value_blob FROM writes
            WHERE thread_id = ? AND checkpoint_ns = ? AND checkpoint_id = ?
            ORDER BY task_id ASC, write_idx ASC
            """,
            (row["thread_id"], row["checkpoint_ns"], row["checkpoint_id"]),
        ).fetchall()
        pending_writes = [
            (
                write_row["task_id"],
                write_row["channel"],
                self.serde.loads_typed((write_row["value_type"], write_row["value_blob"])),
            )
            for write_row in writes_rows
        ]

        parent_checkpoint_id = row["parent_checkpoint_id"]
        return CheckpointTuple(
            config={
                "configurable": {
                    "thread_id": row["thread_id"],
                    "checkpoint_ns": row["checkpoint_ns"],
                    "checkpoint_id": row["checkpoint_id"],
                }
            },
            checkpoint=checkpoint,
            metadata=metadata,
            pending_writes=pending_writes,
            parent_config=(
                {
                    "configurable": {
                        "thread_id": row["thread_id"],
                        "checkpoint_ns": row["checkpoint_ns"],
                        "checkpoint_id": parent_checkpoint_id,
                    }
                }
                if parent_checkpoint_id
                else None
            ),
        )

    def get_tuple(self, config: RunnableConfig) -> CheckpointTuple | None:
        thread_id: str = config["configurable"]["thread_id"]
        checkpoint_ns: str = config["configurable"].get("checkpoint_ns", "")
        checkpoint_id = get_checkpoint_id(config)

        try:
            with self._get_conn() as conn:
                if checkpoint_id:
                    row = conn.execute(
                        """
                        SELECT * FROM checkpoints
                        WHERE thread_id = ? AND checkpoint_ns = ? AND checkpoint_id = ?
                        """,
                        (thread_id, checkpoint_ns, checkpoint_id),
                    ).fetchone()
                else:
                    row = conn.execute(
                        """
                        SELECT * FROM checkpoints
                        WHERE thread_id = ? AND checkpoint_ns = ?
                        ORDER BY checkpoint_id DESC
                        LIMIT 1
                        """,
                        (thread_id, checkpoint_ns),
                    ).fetchone()

                if row is None:
                    return None
                return self._row_to_tuple(conn, row)
        except (sqlite3.Error, ValueError, TypeError, KeyError, NotImplementedError) as exc:
            logger.error(
                f"Failed to read checkpoint for thread {thread_id}; "
                f"continuing without history: {exc}"
            )
            return None

    def list(
        self,
        config: RunnableConfig | None,
        *,
        filter: dict[str, Any] | None = None,
        before: RunnableConfig | None = None,
        limit: int | None = None,
    ) -> Iterator[CheckpointTuple]:
        """Yield checkpoints newest-first, streaming rows from the database."""
        query = "SELECT * FROM checkpoints"
        params: list[Any] = []
        clauses: list[str] = []

        if config:
            clauses.append("thread_id = ?")
            params.append(config["configurable"]["thread_id"])
            checkpoint_ns = config["configurable"].get("checkpoint_ns")
            if checkpoint_ns is not None:
                clauses.append("checkpoint_ns = ?")
                params.append(checkpoint_ns)
            checkpoint_id = get_checkpoint_id(config)
            if checkpoint_id:
                clauses.append("checkpoint_id = ?")
                params.append(checkpoint_id)
        if before is not None:
            before_id = get_checkpoint_id(before)
            if before_id:
                clauses.append("checkpoint_id < ?")
                params.append(before_id)

        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY checkpoint_id DESC"

        remaining = limit
        with self._get_conn() as conn:
            for row in conn.execute(query, params):
                if filter:
                    metadata = self.serde.loads_typed((row["metadata_type"], row["metadata_blob"]))
                    if not all(metadata.get(key) == value for key, value in filter.items()):
                        continue

                yield self._row_to_tuple(conn, row)

                if remaining is not None:
                    remaining -= 1
                    if remaining <= 0:
                        break

    def put(
        self,
        config: RunnableConfig,
        checkpoint: Checkpoint,
        metadata: CheckpointMetadata,
        new_versions: ChannelVersions,
    ) -> RunnableConfig:
        thread_id = config["configurable"]["thread_id"]
        checkpoint_ns = config["configurable"].get("checkpoint_ns", "")
        parent_checkpoint_id = config["configurable"].get("checkpoint_id")

        stored = dict(checkpoint)
        stored["channel_values"] = {
            key: _redact_input(key, value)
            for key, value in checkpoint.get("channel_values", {}).items()
            if key not in TRANSIENT_CHANNELS
        }
        stored_metadata = dict(get_checkpoint_metadata(config, metadata))
        if isinstance(stored_metadata.get("writes"), dict):
            stored_metadata["writes"] = {
                node: _redact_input(START, output) for node, output in stored_metadata["writes"].items()
            }

        try:
            checkpoint_type, checkpoint_blob = self.serde.dumps_typed(stored)
            metadata_type, metadata_blob = self.serde.dumps_typed(stored_metadata)
            with self._lock:
                with self._get_conn() as conn:
                    conn.execute(
                        """
                        INSERT INTO checkpoints
                        (thread_id, checkpoint_ns, checkpoint_id, parent_checkpoint_id,
                         checkpoint_type, checkpoint_blob, metadata_type, metadata_blob, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            thread_id,
                            checkpoint_ns,
                            checkpoint["id"],
                            parent_checkpoint_id,
                            checkpoint_type,
                            sqlite3.Binary(checkpoint_blob),
                            metadata_type,
                            sqlite3.Binary(metadata_blob),
                            datetime.now().isoformat(),
                        ),
                    )
                    conn.commit()
        except (sqlite3.Error, ValueError, TypeError) as exc:
            logger.error(f"Failed to persist checkpoint {checkpoint['id']} for thread {thread_id}: {exc}")
            raise CheckpointWriteError(
                f"Checkpoint {checkpoint['id']} for thread {thread_id} was not persisted: {exc}"
            ) from exc

        return {
            "configurable": {
                "thread_id": thread_id,
                "checkpoint_ns": checkpoint_ns,
                "checkpoint_id": checkpoint["id"],
            }
        }

    def put_writes(
        self,
        config: RunnableConfig,
        writes: Sequence[tuple[str, Any]],
        task_id: str,
        task_path: str = "",
    ) -> None:
        thread_id = config["configurable"]["thread_id"]
        checkpoint_ns = config["configurable"].get("checkpoint_ns", "")
        checkpoint_id = config["configurable"]["checkpoint_id"]

        try:
            with self._lock:
                with self._get_conn() as conn:
                    for idx, (channel, value) in enumerate(writes):
                        if channel in TRANSIENT_CHANNELS:
                            continue
                        write_idx = WRITES_IDX_MAP.get(channel, idx)
                        value_type, value_blob = self.serde.dumps_typed(_redact_input(channel, value))
                        # Special writes overwrite; regular writes are kept on retry.
                        verb = "INSERT OR REPLACE" if write_idx < 0 else "INSERT OR IGNORE"
                        conn.execute(
                            f"""
                            {verb} INTO writes
                            (thread_id, checkpoint_ns, checkpoint_id, task_id, write_idx,
                             channel, value_type, value_blob, task_path)
                            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                            """,
                            (
                                thread_id,
                                checkpoint_ns,
                                checkpoint_id,
                                task_id,
                                write_idx,
                                channel,
                                value_type,
                                sqlite3.Binary(value_blob),
                                task_path,
                            ),
                        )
                    conn.commit()
        except (sqlite3.Error, ValueError, TypeError) as exc:
            raise CheckpointWriteError(
                f"Pending writes for checkpoint {checkpoint_id} were not persisted: {exc}"
            ) from exc

    def delete_thread(self, thread_id: str) -> None:
        with self._lock:
            with self._get_conn() as conn:
                conn.execute("DELETE FROM checkpoints WHERE thread_id = ?", (thread_id,))
                conn.execute("DELETE FROM writes WHERE thread_id = ?", (thread_id,))
                conn.commit()

    def get_next_version(self, current: str | None, channel: None) -> str:
        if current is None:
            current_v = 0
        elif isinstance(current, int):
            current_v = current
        else:
            current_v = int(current.split(".")[0])
        return f"{current_v + 1:032}.{random.random():016}"

    async def aget_tuple(self, config: RunnableConfig) -> CheckpointTuple | None:
        return await asyncio.to_thread(self.get_tuple, config)

    async def alist(
        self,
        config: RunnableConfig | None,
        *,
        filter: dict[str, Any] | None = None,
        before: RunnableConfig | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[CheckpointTuple]:
        iterator = self.list(config, filter=filter, before=before, limit=limit)
        try:
            while True:
                item = await asyncio.to_thread(next, iterator, _EXHAUSTED)
                if item is _EXHAUSTED:
                    break
                yield item
        finally:
            # Early exit by the consumer must still release the connection.
            iterator.close()

    async def aput(
        self,
        config: RunnableConfig,
        checkpoint: Checkpoint,
        metadata: CheckpointMetadata,
        new_versions: ChannelVersions,
    ) -> RunnableConfig:
        return await asyncio.to_thread(self.put, config, checkpoint, metadata, new_versions)

    async def aput_writes(
        self,
        config: RunnableConfig,
        writes: Sequence[tuple[str, Any]],
        task_id: str,
        task_path: str = "",
    ) -> None:
        await asyncio.to_thread(self.put_writes, config, writes, task_id, task_path)

    async def adelete_thread(self, thread_id: str) -> None:
        await asyncio.to_thread(self.delete_thread, thread_id)
