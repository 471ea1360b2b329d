"""Unit tests for Dispatcher.enqueue."""

from __future__ import annotations

from typing import Iterable

import pytest

from treeline.core.backends.base import InvokeOutcome
from treeline.core.engine.orchestrator import Orchestrator
from treeline.core.engine.result_types import DispatchErrorCode
from treeline.core.models.jobs import JobKind, JobNode
from treeline.core.types.result import Ok, is_err, is_ok
from treeline.core.types.status import JobStatus

from tests.helpers.tree import (
    RecordingBackend,
    RecordingHandlers,
    RecordingStore,
    TreeBuilder,
    YieldingStore,
    make_engine,
    make_registry,
)


@pytest.mark.unit
class TestEnqueueLeaf:
    @pytest.mark.asyncio
    async def test_leaf_is_queued_with_handle_before_invoke(self) -> None:
        builder = TreeBuilder()
        leaf = builder.add(
            'fetch',
            arguments={'url': 'https://example.org'},
            metadata={'queue': 'io'},
        )
        engine = await make_engine(builder)

        result = await engine.orchestrator.dispatcher.enqueue(await engine.node(leaf))

        assert is_ok(result)
        handle = result.ok_value
        assert handle is not None
        node = await engine.node(leaf)
        assert node.status == JobStatus.QUEUED
        assert node.job_handle == handle

        [(request, bypass)] = engine.backend.calls
        assert request.handle == handle
        assert request.worker_name == 'fetch'
        assert request.arguments == {'url': 'https://example.org'}
        assert request.execution_metadata == {'queue': 'io'}
        assert bypass is False

    @pytest.mark.asyncio
    async def test_stale_snapshot_enqueued_twice_dispatches_once(self) -> None:
        builder = TreeBuilder()
        leaf = builder.add('fetch')
        engine = await make_engine(builder)
        snapshot = await engine.node(leaf)

        first = await engine.orchestrator.dispatcher.enqueue(snapshot)
        second = await engine.orchestrator.dispatcher.enqueue(snapshot)

        assert is_ok(first) and first.ok_value is not None
        assert second == Ok(None)
        assert len(engine.backend.calls) == 1

    @pytest.mark.parametrize('status', [JobStatus.QUEUED, JobStatus.RUNNING])
    @pytest.mark.asyncio
    async def test_non_initialized_node_is_noop(self, status: JobStatus) -> None:
        builder = TreeBuilder()
        leaf = builder.add('fetch')
        engine = await make_engine(builder)
        await engine.store.transition(
            leaf, from_statuses={JobStatus.INITIALIZED}, to=status
        )

        result = await engine.orchestrator.dispatcher.enqueue(await engine.node(leaf))

        assert result == Ok(None)
        assert engine.backend.calls == []

    @pytest.mark.asyncio
    async def test_unique_worker_invoked_with_bypass(self) -> None:
        builder = TreeBuilder()
        leaf = builder.add('notify', arguments=['ops@example.org'])
        engine = await make_engine(builder)

        await engine.orchestrator.dispatcher.enqueue(await engine.node(leaf))

        [(request, bypass)] = engine.backend.calls
        assert request.unique is not None
        assert bypass is True

    @pytest.mark.asyncio
    async def test_unregistered_kind_is_typed_error(self) -> None:
        builder = TreeBuilder()
        leaf = builder.add('does_not_exist')
        engine = await make_engine(builder)

        result = await engine.orchestrator.dispatcher.enqueue(await engine.node(leaf))

        assert is_err(result)
        assert result.err_value.code == DispatchErrorCode.WORKER_NOT_REGISTERED
        assert result.err_value.node_id == leaf
        assert result.err_value.kind == 'does_not_exist'
        assert await engine.status(leaf) == JobStatus.INITIALIZED
        assert engine.backend.calls == []

    @pytest.mark.asyncio
    async def test_backend_error_fails_node(self) -> None:
        builder = TreeBuilder()
        leaf = builder.add('fetch', arguments=[1])
        engine = await make_engine(builder)
        engine.backend.failing('connection refused')

        result = await engine.orchestrator.dispatcher.enqueue(await engine.node(leaf))

        assert is_err(result)
        assert result.err_value.code == DispatchErrorCode.BACKEND_INVOKE_FAILED
        assert isinstance(result.err_value.exception, ConnectionError)
        assert await engine.status(leaf) == JobStatus.FAILED
        [(workflow_id, worker, item, cause)] = engine.handlers.errors
        assert workflow_id == builder.workflow.id
        assert worker == 'fetch'
        assert item == [1]
        assert isinstance(cause, ConnectionError)

    @pytest.mark.asyncio
    async def test_deduplicated_invocation_fails_node(self) -> None:
        builder = TreeBuilder()
        leaf = builder.add('fetch')
        engine = await make_engine(builder)
        engine.backend.outcome = Ok(InvokeOutcome.DEDUPLICATED)

        result = await engine.orchestrator.dispatcher.enqueue(await engine.node(leaf))

        assert is_err(result)
        assert result.err_value.code == DispatchErrorCode.BACKEND_INVOKE_FAILED
        assert await engine.status(leaf) == JobStatus.FAILED
        assert len(engine.handlers.errors) == 1


@pytest.mark.unit
class TestEnqueueParallel:
    @pytest.mark.asyncio
    async def test_every_child_enqueued(self) -> None:
        builder = TreeBuilder()
        par = builder.add(JobKind.PARALLEL)
        kids = [builder.add('fetch', par, arguments=[i]) for i in range(3)]
        engine = await make_engine(builder)

        result = await engine.orchestrator.dispatcher.enqueue(await engine.node(par))

        assert await engine.status(par) == JobStatus.RUNNING
        for kid in kids:
            assert await engine.status(kid) == JobStatus.QUEUED
        assert len(engine.backend.calls) == 3
        assert is_ok(result)
        assert result.ok_value == await engine.handle_of(kids[0])

    @pytest.mark.asyncio
    async def test_parallel_of_chains_starts_each_child_only(self) -> None:
        builder = TreeBuilder()
        par = builder.add(JobKind.PARALLEL)
        sub_a = builder.add('etl_subflow', par)
        a1 = builder.add('fetch', sub_a)
        a2 = builder.add('transform', sub_a)
        b = builder.add('fetch', par)
        engine = await make_engine(builder)

        await engine.orchestrator.dispatcher.enqueue(await engine.node(par))

        assert await engine.status(sub_a) == JobStatus.COMPLETE
        assert await engine.status(a1) == JobStatus.QUEUED
        assert await engine.status(a2) == JobStatus.INITIALIZED
        assert await engine.status(b) == JobStatus.QUEUED

    @pytest.mark.asyncio
    async def test_empty_parallel_completes_immediately(self) -> None:
        builder = TreeBuilder()
        par = builder.add(JobKind.PARALLEL)
        after = builder.add('fetch')
        engine = await make_engine(builder)

        result = await engine.orchestrator.dispatcher.enqueue(await engine.node(par))

        assert result == Ok(None)
        node = await engine.node(par)
        assert node.status == JobStatus.COMPLETE
        assert node.descendants_are_complete is True
        assert await engine.status(after) == JobStatus.QUEUED

    @pytest.mark.asyncio
    async def test_unregistered_child_error_surfaces(self) -> None:
        builder = TreeBuilder()
        par = builder.add(JobKind.PARALLEL)
        ok_kid = builder.add('fetch', par)
        bad_kid = builder.add('mystery', par)
        engine = await make_engine(builder)

        result = await engine.orchestrator.dispatcher.enqueue(await engine.node(par))

        assert is_err(result)
        assert result.err_value.node_id == bad_kid
        assert await engine.status(ok_kid) == JobStatus.QUEUED
        assert await engine.status(bad_kid) == JobStatus.INITIALIZED

    @pytest.mark.asyncio
    async def test_store_exception_raised_after_siblings_settle(self) -> None:
        builder = TreeBuilder()
        par = builder.add(JobKind.PARALLEL)
        broken = builder.add('fetch', par)
        inner = builder.add(JobKind.PARALLEL, par)
        inner_kids = [builder.add('fetch', inner, arguments=[i]) for i in range(2)]
        workflow, nodes = builder.build()

        store = _BrokenWriteStore(broken)
        await store.insert_workflow(workflow, nodes)
        orchestrator = Orchestrator(
            YieldingStore(store),  # type: ignore[arg-type]
            RecordingBackend(),
            make_registry(),
            handlers=RecordingHandlers(),
        )

        with pytest.raises(ConnectionError):
            await orchestrator.dispatcher.enqueue(await store.get(par))  # type: ignore[arg-type]

        # The slower sibling branch finished before the error surfaced
        for kid in inner_kids:
            assert (await store.get(kid)).status == JobStatus.QUEUED  # type: ignore[union-attr]
        assert (await store.get(broken)).status == JobStatus.INITIALIZED  # type: ignore[union-attr]


class _BrokenWriteStore(RecordingStore):
    """Raises on the first status write of one node, like a dropped connection."""

    def __init__(self, broken_id: str) -> None:
        super().__init__()
        self.broken_id = broken_id

    async def transition(
        self,
        node_id: str,
        *,
        from_statuses: Iterable[JobStatus],
        to: JobStatus,
        job_handle: str | None = None,
    ) -> JobNode | None:
        if node_id == self.broken_id:
            raise ConnectionError('connection reset during status write')
        return await super().transition(
            node_id, from_statuses=from_statuses, to=to, job_handle=job_handle
        )


@pytest.mark.unit
class TestEnqueueBatch:
    @pytest.mark.asyncio
    async def test_only_first_element_of_each_lane_queued(self) -> None:
        builder = TreeBuilder()
        batch = builder.add(JobKind.BATCH)
        lane_a = builder.add(JobKind.BATCH_CHILD, batch)
        a1 = builder.add('fetch', lane_a, arguments=['a'])
        a2 = builder.add('transform', lane_a, arguments=['a'])
        lane_b = builder.add(JobKind.BATCH_CHILD, batch)
        b1 = builder.add('fetch', lane_b, arguments=['b'])
        b2 = builder.add('transform', lane_b, arguments=['b'])
        engine = await make_engine(builder)

        result = await engine.orchestrator.dispatcher.enqueue(await engine.node(batch))

        assert await engine.status(batch) == JobStatus.RUNNING
        assert await engine.status(lane_a) == JobStatus.RUNNING
        assert await engine.status(lane_b) == JobStatus.RUNNING
        assert await engine.status(a1) == JobStatus.QUEUED
        assert await engine.status(b1) == JobStatus.QUEUED
        assert await engine.status(a2) == JobStatus.INITIALIZED
        assert await engine.status(b2) == JobStatus.INITIALIZED
        assert is_ok(result)
        assert result.ok_value == await engine.handle_of(a1)

    @pytest.mark.asyncio
    async def test_empty_lane_completes_without_blocking_batch(self) -> None:
        builder = TreeBuilder()
        batch = builder.add(JobKind.BATCH)
        empty_lane = builder.add(JobKind.BATCH_CHILD, batch)
        lane = builder.add(JobKind.BATCH_CHILD, batch)
        only = builder.add('fetch', lane)
        engine = await make_engine(builder)

        await engine.orchestrator.dispatcher.enqueue(await engine.node(batch))

        empty = await engine.node(empty_lane)
        assert empty.status == JobStatus.COMPLETE
        assert empty.descendants_are_complete is True
        assert await engine.status(only) == JobStatus.QUEUED
        assert (await engine.node(batch)).descendants_are_complete is False

    @pytest.mark.asyncio
    async def test_empty_batch_completes_workflow(self) -> None:
        builder = TreeBuilder()
        batch = builder.add(JobKind.BATCH)
        engine = await make_engine(builder)

        await engine.orchestrator.dispatcher.enqueue(await engine.node(batch))

        assert await engine.status(batch) == JobStatus.COMPLETE
        assert engine.handlers.completed == [builder.workflow.id]

    @pytest.mark.asyncio
    async def test_lane_enqueued_directly_starts_first_element(self) -> None:
        builder = TreeBuilder()
        batch = builder.add(JobKind.BATCH)
        lane = builder.add(JobKind.BATCH_CHILD, batch)
        first = builder.add('fetch', lane)
        second = builder.add('fetch', lane)
        engine = await make_engine(builder)

        await engine.orchestrator.dispatcher.enqueue(await engine.node(lane))

        assert await engine.status(lane) == JobStatus.RUNNING
        assert await engine.status(first) == JobStatus.QUEUED
        assert await engine.status(second) == JobStatus.INITIALIZED


@pytest.mark.unit
class TestEnqueueNestedWorkflow:
    @pytest.mark.asyncio
    async def test_nested_workflow_never_reaches_backend(self) -> None:
        builder = TreeBuilder()
        nested = builder.add('etl_subflow')
        inner_1 = builder.add('fetch', nested)
        inner_2 = builder.add('transform', nested)
        engine = await make_engine(builder)

        result = await engine.orchestrator.dispatcher.enqueue(await engine.node(nested))

        assert result == Ok(None)
        assert await engine.status(nested) == JobStatus.COMPLETE
        assert await engine.status(inner_1) == JobStatus.QUEUED
        assert await engine.status(inner_2) == JobStatus.INITIALIZED
        assert [r.worker_name for r, _ in engine.backend.calls] == ['fetch']
        statuses = [to for node_id, _, to in engine.store.edges if node_id == nested]
        assert JobStatus.QUEUED not in statuses
        assert statuses == [JobStatus.RUNNING, JobStatus.COMPLETE]

    @pytest.mark.asyncio
    async def test_dispatcher_without_cascader_refuses_nested(self) -> None:
        builder = TreeBuilder()
        nested = builder.add('etl_subflow')
        engine = await make_engine(builder)
        engine.orchestrator.dispatcher.cascader = None

        with pytest.raises(RuntimeError):
            await engine.orchestrator.dispatcher.enqueue(await engine.node(nested))
