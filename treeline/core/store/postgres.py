# treeline/core/store/postgres.py
from __future__ import annotations

import hashlib
import json
from typing import Any, Iterable, Sequence

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from treeline.core.errors import ErrorCode, JobTreeError
from treeline.core.logging import get_logger
from treeline.core.models.config import PostgresConfig
from treeline.core.models.jobs import JobNode, WorkflowRecord
from treeline.core.models.jobs_pg import SubjobModel, WorkflowModel  # noqa: F401
from treeline.core.models.task_pg import Base, TaskModel  # noqa: F401
from treeline.core.store.base import check_transition, validate_tree
from treeline.core.store.sql import (
    DELETE_SUBJOBS_SQL,
    GET_CHILDREN_SQL,
    GET_ROOT_CHAIN_SQL,
    GET_SUBJOB_BY_HANDLE_SQL,
    GET_SUBJOB_SQL,
    GET_WORKFLOW_SQL,
    INSERT_SUBJOB_SQL,
    INSERT_WORKFLOW_SQL,
    MARK_DESCENDANTS_COMPLETE_SQL,
    TRANSITION_SUBJOB_SQL,
    TRANSITION_WORKFLOW_SQL,
)
from treeline.core.types.status import JobStatus, WorkflowStatus


def node_from_row(row: Any) -> JobNode:
    """Map a row selected with SUBJOB_COLUMNS to a JobNode snapshot."""
    return JobNode(
        id=row[0],
        workflow_id=row[1],
        kind=row[2],
        parent_id=row[3],
        next_id=row[4],
        position=row[5],
        status=JobStatus(row[6]),
        descendants_are_complete=bool(row[7]),
        job_handle=row[8],
        arguments=row[9],
        execution_metadata=row[10] or {},
    )


def workflow_from_row(row: Any) -> WorkflowRecord:
    return WorkflowRecord(
        id=row[0],
        name=row[1],
        status=WorkflowStatus(row[2]),
        error=row[3],
        created_at=row[4],
        completed_at=row[5],
    )


def schema_advisory_key(database_url: str) -> int:
    """Stable 64-bit advisory lock key for schema initialization."""
    basis = database_url.encode('utf-8', errors='ignore')
    h = hashlib.sha256(b'treeline-schema:' + basis).digest()
    return int.from_bytes(h[:8], byteorder='big', signed=True)


def create_engine_from_config(config: PostgresConfig) -> AsyncEngine:
    engine_cfg = config.model_dump(exclude={'database_url'}, exclude_none=True)
    return create_async_engine(config.database_url, **engine_cfg)


class PostgresJobStore:
    """
    PostgreSQL-backed job-tree store.

    Every write runs in its own committed transaction, so a status written by
    the dispatcher is durable before the backend is invoked. Status and flag
    writes are compare-and-set UPDATE ... RETURNING statements.
    """

    def __init__(
        self,
        config: PostgresConfig,
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self.config = config
        self.logger = get_logger('store')
        self.async_engine = engine or create_engine_from_config(config)
        self.session_factory = async_sessionmaker(
            self.async_engine, expire_on_commit=False
        )
        self._initialized = False

    async def ensure_schema_initialized(self) -> None:
        """
        Create tables if missing.

        Safe to call multiple times and from multiple processes; guarded by a
        PostgreSQL advisory lock to avoid DDL races.
        """
        if self._initialized:
            return
        async with self.async_engine.begin() as conn:
            await conn.execute(
                text('SELECT pg_advisory_xact_lock(CAST(:key AS BIGINT))'),
                {'key': schema_advisory_key(self.config.database_url)},
            )
            await conn.run_sync(Base.metadata.create_all)
        self._initialized = True
        self.logger.info('PostgresJobStore schema ready')

    async def close_async(self) -> None:
        await self.async_engine.dispose()

    # ----------------- workflows -----------------

    async def insert_workflow(
        self, workflow: WorkflowRecord, nodes: Sequence[JobNode]
    ) -> None:
        validate_tree(workflow, nodes)
        await self.ensure_schema_initialized()
        async with self.session_factory() as session:
            existing = await session.execute(GET_WORKFLOW_SQL, {'wf_id': workflow.id})
            if existing.fetchone() is not None:
                raise JobTreeError(
                    message=f"workflow '{workflow.id}' already exists",
                    code=ErrorCode.TREE_DUPLICATE_WORKFLOW_ID,
                )
            await session.execute(
                INSERT_WORKFLOW_SQL,
                {
                    'id': workflow.id,
                    'name': workflow.name,
                    'status': workflow.status.value,
                    'error': workflow.error,
                    'created_at': workflow.created_at,
                },
            )
            for node in nodes:
                await session.execute(
                    INSERT_SUBJOB_SQL,
                    {
                        'id': node.id,
                        'wf_id': node.workflow_id,
                        'kind': node.kind,
                        'parent_id': node.parent_id,
                        'next_id': node.next_id,
                        'position': node.position,
                        'status': node.status.value,
                        'dac': node.descendants_are_complete,
                        'job_handle': node.job_handle,
                        'arguments': json.dumps(node.arguments),
                        'metadata': json.dumps(node.execution_metadata),
                    },
                )
            await session.commit()
        self.logger.debug(f'Stored workflow {workflow.id[:8]} with {len(nodes)} subjobs')

    async def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        async with self.session_factory() as session:
            result = await session.execute(GET_WORKFLOW_SQL, {'wf_id': workflow_id})
            row = result.fetchone()
        return workflow_from_row(row) if row is not None else None

    async def transition_workflow(
        self,
        workflow_id: str,
        *,
        from_statuses: Iterable[WorkflowStatus],
        to: WorkflowStatus,
        error: str | None = None,
    ) -> WorkflowRecord | None:
        sources = list(from_statuses)
        check_transition(sources, to)
        async with self.session_factory() as session:
            result = await session.execute(
                TRANSITION_WORKFLOW_SQL,
                {
                    'wf_id': workflow_id,
                    'to_status': to.value,
                    'error': error,
                    'terminal': to.is_terminal,
                    'from_statuses': [s.value for s in sources],
                },
            )
            row = result.fetchone()
            await session.commit()
        return workflow_from_row(row) if row is not None else None

    # ----------------- subjobs -----------------

    async def get(self, node_id: str) -> JobNode | None:
        async with self.session_factory() as session:
            result = await session.execute(GET_SUBJOB_SQL, {'id': node_id})
            row = result.fetchone()
        return node_from_row(row) if row is not None else None

    async def get_by_handle(self, job_handle: str) -> JobNode | None:
        async with self.session_factory() as session:
            result = await session.execute(
                GET_SUBJOB_BY_HANDLE_SQL, {'handle': job_handle}
            )
            row = result.fetchone()
        return node_from_row(row) if row is not None else None

    async def children(self, node_id: str) -> list[JobNode]:
        async with self.session_factory() as session:
            result = await session.execute(GET_CHILDREN_SQL, {'id': node_id})
            rows = result.fetchall()
        return [node_from_row(row) for row in rows]

    async def root_chain(self, workflow_id: str) -> list[JobNode]:
        async with self.session_factory() as session:
            result = await session.execute(GET_ROOT_CHAIN_SQL, {'wf_id': workflow_id})
            rows = result.fetchall()
        return [node_from_row(row) for row in rows]

    async def transition(
        self,
        node_id: str,
        *,
        from_statuses: Iterable[JobStatus],
        to: JobStatus,
        job_handle: str | None = None,
    ) -> JobNode | None:
        sources = list(from_statuses)
        check_transition(sources, to)
        async with self.session_factory() as session:
            result = await session.execute(
                TRANSITION_SUBJOB_SQL,
                {
                    'id': node_id,
                    'to_status': to.value,
                    'handle': job_handle,
                    'from_statuses': [s.value for s in sources],
                },
            )
            row = result.fetchone()
            await session.commit()
        return node_from_row(row) if row is not None else None

    async def mark_descendants_complete(self, node_id: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                MARK_DESCENDANTS_COMPLETE_SQL, {'id': node_id}
            )
            flipped = result.fetchone() is not None
            await session.commit()
        return flipped

    async def delete_subjobs(self, workflow_id: str) -> int:
        async with self.session_factory() as session:
            result = await session.execute(DELETE_SUBJOBS_SQL, {'wf_id': workflow_id})
            await session.commit()
        return result.rowcount or 0
