# treeline/core/backends/postgres.py
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from treeline.core.backends.base import (
    BackendErrorCode,
    BackendOperationError,
    BackendResult,
    InvocationRequest,
    InvokeOutcome,
)
from treeline.core.logging import get_logger
from treeline.core.models.config import PostgresConfig
from treeline.core.store.postgres import create_engine_from_config
from treeline.core.store.sql import (
    INSERT_TASK_SQL,
    NOTIFY_TASK_NEW_SQL,
    RELEASE_EXPIRED_UNIQUE_KEY_SQL,
)
from treeline.core.types.result import Err, Ok
from treeline.core.utils.fingerprint import unique_fingerprint

DEFAULT_QUEUE = 'default'
DEFAULT_PRIORITY = 100


class PostgresBackend:
    """
    Execution backend that persists invocations into ``treeline_tasks``.

    External workers pick rows up (a ``treeline_task_new`` NOTIFY is sent per
    insert) and report outcomes through ``Orchestrator.complete_handle`` /
    ``Orchestrator.fail_handle``.

    Features:
      - The caller's handle is the row's primary key
      - ``execution_metadata['queue']`` / ``['priority']`` route the row
      - Uniqueness policies via a partial unique index on ``unique_key``
    """

    def __init__(
        self,
        config: PostgresConfig,
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self.config = config
        self.logger = get_logger('backend')
        self.async_engine = engine or create_engine_from_config(config)
        self.session_factory = async_sessionmaker(
            self.async_engine, expire_on_commit=False
        )

    def _row_params(
        self, request: InvocationRequest, bypass_unique: bool
    ) -> dict[str, Any]:
        metadata = dict(request.execution_metadata)
        queue = str(metadata.pop('queue', DEFAULT_QUEUE))
        priority = int(metadata.pop('priority', DEFAULT_PRIORITY))

        unique_key: str | None = None
        unique_expires_at: datetime | None = None
        if request.unique is not None and not bypass_unique:
            unique_key = unique_fingerprint(request.worker_name, request.arguments)
            ttl = request.unique.expiration_seconds
            if ttl is not None:
                unique_expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl)

        return {
            'id': request.handle,
            'worker_name': request.worker_name,
            'queue': queue,
            'priority': priority,
            'arguments': json.dumps(request.arguments),
            'metadata': json.dumps(metadata),
            'unique_key': unique_key,
            'unique_expires_at': unique_expires_at,
        }

    async def invoke(
        self,
        request: InvocationRequest,
        *,
        bypass_unique: bool = False,
    ) -> BackendResult[InvokeOutcome]:
        try:
            params = self._row_params(request, bypass_unique)
        except (TypeError, ValueError) as exc:
            return Err(
                BackendOperationError(
                    code=BackendErrorCode.INVOKE_FAILED,
                    message=f'Cannot encode invocation {request.handle}: {exc}',
                    retryable=False,
                    exception=exc,
                )
            )

        try:
            async with self.session_factory() as session:
                if params['unique_key'] is not None:
                    await session.execute(
                        RELEASE_EXPIRED_UNIQUE_KEY_SQL,
                        {'unique_key': params['unique_key']},
                    )
                result = await session.execute(INSERT_TASK_SQL, params)
                inserted = result.fetchone() is not None
                if inserted:
                    await session.execute(NOTIFY_TASK_NEW_SQL, {'id': request.handle})
                await session.commit()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.error(f'Invoke {request.worker_name} {request.handle[:8]} failed: {exc}')
            return Err(
                BackendOperationError(
                    code=BackendErrorCode.INVOKE_FAILED,
                    message=f'Failed to persist invocation {request.handle}',
                    retryable=True,
                    exception=exc,
                )
            )

        if not inserted:
            self.logger.info(
                f'Dropping duplicate {request.worker_name} invocation {request.handle[:8]}'
            )
            return Ok(InvokeOutcome.DEDUPLICATED)
        return Ok(InvokeOutcome.ACCEPTED)

    async def close_async(self) -> None:
        await self.async_engine.dispose()
