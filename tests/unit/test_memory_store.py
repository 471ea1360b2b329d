"""Unit tests for InMemoryJobStore and tree validation."""

from __future__ import annotations

import asyncio
import threading

import pytest

from treeline.core.errors import ErrorCode, JobTreeError, MultipleValidationErrors
from treeline.core.models.jobs import JobKind, JobNode, WorkflowRecord, new_id
from treeline.core.store.base import InvalidTransitionError, validate_tree
from treeline.core.store.memory import InMemoryJobStore
from treeline.core.types.status import JobStatus, WorkflowStatus

from tests.helpers.tree import TreeBuilder


def _chain() -> tuple[TreeBuilder, str, str]:
    builder = TreeBuilder()
    first = builder.add('fetch')
    second = builder.add('transform')
    return builder, first, second


@pytest.mark.unit
class TestValidateTree:
    def test_valid_tree_passes(self) -> None:
        builder = TreeBuilder()
        par = builder.add(JobKind.PARALLEL)
        builder.add('fetch', par)
        builder.add('fetch', par)
        validate_tree(*builder.build())

    def test_duplicate_node_id(self) -> None:
        workflow = WorkflowRecord(id=new_id(), name='wf')
        node = JobNode(id='n1', workflow_id=workflow.id, kind='fetch')
        with pytest.raises(JobTreeError) as exc_info:
            validate_tree(workflow, [node, node])
        assert exc_info.value.code == ErrorCode.TREE_DUPLICATE_NODE_ID

    def test_dangling_references_collected(self) -> None:
        workflow = WorkflowRecord(id=new_id(), name='wf')
        node = JobNode(
            id='n1',
            workflow_id=workflow.id,
            kind='fetch',
            parent_id='ghost-parent',
            next_id='ghost-next',
        )
        with pytest.raises(MultipleValidationErrors) as exc_info:
            validate_tree(workflow, [node])
        codes = {e.code for e in exc_info.value.report.errors}
        assert codes == {ErrorCode.TREE_DANGLING_REFERENCE}
        assert len(exc_info.value.report.errors) == 2

    def test_next_must_be_sibling(self) -> None:
        workflow = WorkflowRecord(id=new_id(), name='wf')
        parent = JobNode(id='p', workflow_id=workflow.id, kind='etl_subflow', next_id='c')
        child = JobNode(id='c', workflow_id=workflow.id, kind='fetch', parent_id='p')
        with pytest.raises(JobTreeError) as exc_info:
            validate_tree(workflow, [parent, child])
        assert exc_info.value.help_text is not None

    def test_foreign_workflow_node(self) -> None:
        workflow = WorkflowRecord(id=new_id(), name='wf')
        node = JobNode(id='n1', workflow_id='other', kind='fetch')
        with pytest.raises(JobTreeError) as exc_info:
            validate_tree(workflow, [node])
        assert exc_info.value.code == ErrorCode.TREE_UNKNOWN_WORKFLOW


@pytest.mark.unit
class TestInMemoryJobStore:
    @pytest.mark.asyncio
    async def test_insert_and_read_back(self) -> None:
        store = InMemoryJobStore()
        builder, first, second = _chain()
        workflow, nodes = builder.build()
        await store.insert_workflow(workflow, nodes)

        assert await store.get_workflow(workflow.id) == workflow
        node = await store.get(first)
        assert node is not None
        assert node.next_id == second
        assert [n.id for n in await store.root_chain(workflow.id)] == [first, second]

    @pytest.mark.asyncio
    async def test_duplicate_workflow_rejected(self) -> None:
        store = InMemoryJobStore()
        workflow, nodes = _chain()[0].build()
        await store.insert_workflow(workflow, nodes)
        with pytest.raises(JobTreeError) as exc_info:
            await store.insert_workflow(workflow, [])
        assert exc_info.value.code == ErrorCode.TREE_DUPLICATE_WORKFLOW_ID

    @pytest.mark.asyncio
    async def test_children_ordered_by_position(self) -> None:
        store = InMemoryJobStore()
        builder = TreeBuilder()
        par = builder.add(JobKind.PARALLEL)
        kids = [builder.add('fetch', par, arguments=[i]) for i in range(5)]
        workflow, nodes = builder.build()
        await store.insert_workflow(workflow, list(reversed(nodes)))

        assert [n.id for n in await store.children(par)] == kids
        assert await store.children(kids[0]) == []

    @pytest.mark.asyncio
    async def test_transition_is_compare_and_set(self) -> None:
        store = InMemoryJobStore()
        builder, first, _ = _chain()
        await store.insert_workflow(*builder.build())

        queued = await store.transition(
            first,
            from_statuses={JobStatus.INITIALIZED},
            to=JobStatus.QUEUED,
            job_handle='h-1',
        )
        assert queued is not None
        assert queued.status == JobStatus.QUEUED
        assert queued.job_handle == 'h-1'

        again = await store.transition(
            first, from_statuses={JobStatus.INITIALIZED}, to=JobStatus.RUNNING
        )
        assert again is None
        by_handle = await store.get_by_handle('h-1')
        assert by_handle is not None
        assert by_handle.id == first

    @pytest.mark.asyncio
    async def test_transition_keeps_existing_handle(self) -> None:
        store = InMemoryJobStore()
        builder, first, _ = _chain()
        await store.insert_workflow(*builder.build())
        await store.transition(
            first, from_statuses={JobStatus.INITIALIZED}, to=JobStatus.QUEUED, job_handle='h-1'
        )
        done = await store.transition(
            first, from_statuses={JobStatus.QUEUED}, to=JobStatus.COMPLETE
        )
        assert done is not None
        assert done.job_handle == 'h-1'

    @pytest.mark.asyncio
    async def test_illegal_edge_raises(self) -> None:
        store = InMemoryJobStore()
        builder, first, _ = _chain()
        await store.insert_workflow(*builder.build())
        with pytest.raises(InvalidTransitionError) as exc_info:
            await store.transition(
                first, from_statuses={JobStatus.COMPLETE}, to=JobStatus.RUNNING
            )
        assert exc_info.value.code == ErrorCode.TREE_INVALID_TRANSITION

    @pytest.mark.asyncio
    async def test_missing_node_transition_returns_none(self) -> None:
        store = InMemoryJobStore()
        assert (
            await store.transition(
                'nope', from_statuses={JobStatus.INITIALIZED}, to=JobStatus.QUEUED
            )
            is None
        )

    @pytest.mark.asyncio
    async def test_descendants_flag_flips_once(self) -> None:
        store = InMemoryJobStore()
        builder, first, _ = _chain()
        await store.insert_workflow(*builder.build())

        assert await store.mark_descendants_complete(first) is True
        assert await store.mark_descendants_complete(first) is False
        node = await store.get(first)
        assert node is not None
        assert node.descendants_are_complete is True
        assert await store.mark_descendants_complete('missing') is False

    def test_descendants_flag_flips_once_across_threads(self) -> None:
        store = InMemoryJobStore()
        builder, first, _ = _chain()
        asyncio.run(store.insert_workflow(*builder.build()))

        results: list[bool] = []
        barrier = threading.Barrier(8)

        def flip() -> None:
            barrier.wait()
            results.append(asyncio.run(store.mark_descendants_complete(first)))

        threads = [threading.Thread(target=flip) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_workflow_transition(self) -> None:
        store = InMemoryJobStore()
        workflow, nodes = _chain()[0].build()
        await store.insert_workflow(workflow, nodes)

        running = await store.transition_workflow(
            workflow.id, from_statuses={WorkflowStatus.PENDING}, to=WorkflowStatus.RUNNING
        )
        assert running is not None
        assert running.completed_at is None

        failed = await store.transition_workflow(
            workflow.id,
            from_statuses={WorkflowStatus.RUNNING},
            to=WorkflowStatus.FAILED,
            error='fetch: boom',
        )
        assert failed is not None
        assert failed.error == 'fetch: boom'
        assert failed.completed_at is not None

        assert (
            await store.transition_workflow(
                workflow.id,
                from_statuses={WorkflowStatus.RUNNING},
                to=WorkflowStatus.COMPLETED,
            )
            is None
        )

    @pytest.mark.asyncio
    async def test_delete_subjobs(self) -> None:
        store = InMemoryJobStore()
        builder, first, second = _chain()
        workflow, nodes = builder.build()
        await store.insert_workflow(workflow, nodes)
        await store.transition(
            first, from_statuses={JobStatus.INITIALIZED}, to=JobStatus.QUEUED, job_handle='h-1'
        )

        assert await store.delete_subjobs(workflow.id) == 2
        assert await store.get(first) is None
        assert await store.get_by_handle('h-1') is None
        assert await store.get_workflow(workflow.id) is not None
