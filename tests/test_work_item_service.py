from __future__ import annotations

import asyncio

import pytest

from crm.metrics import MetricsRegistry
from crm.work_items.errors import (
    ConcurrencyConflictError,
    IllegalTransitionError,
    WorkItemNotFoundError,
    WorkItemValidationError,
)
from crm.work_items.models import (
    AttachmentMetadata,
    WorkItemCreate,
    WorkItemListQuery,
    WorkItemUpdate,
)
from crm.work_items.repository import WorkItemRepository
from crm.work_items.service import WorkItemService
from crm.work_items.state import WorkItemStatus


class FlakyRepository(WorkItemRepository):
    """Repository whose first ``failures`` writes lose the compare-and-swap."""

    def __init__(self, *args, failures: int = 1, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.failures = failures
        self.write_calls = 0

    async def write_work_item(self, session, item, *, observed_version):
        self.write_calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise ConcurrencyConflictError(item.id, expected=observed_version, actual=None)
        await super().write_work_item(session, item, observed_version=observed_version)


def _flaky(repository: WorkItemRepository, failures: int) -> FlakyRepository:
    return FlakyRepository(repository._session_factory, engine=repository._engine, failures=failures)


@pytest.mark.asyncio
async def test_lifecycle_walkthrough(service: WorkItemService):
    item = await service.create_work_item(WorkItemCreate(title="Fix login bug"))
    assert item.status == WorkItemStatus.DRAFT
    assert item.state_version == 1

    detail = await service.transition_status(item.id, WorkItemStatus.OPEN)
    assert detail.work_item.status == WorkItemStatus.OPEN
    assert detail.work_item.state_version == 2

    with pytest.raises(IllegalTransitionError, match="Transition from Open to Resolved is not permitted"):
        await service.transition_status(item.id, WorkItemStatus.RESOLVED)
    assert (await service.get_work_item(item.id)).state_version == 2

    detail = await service.transition_status(item.id, WorkItemStatus.IN_PROGRESS)
    assert detail.work_item.state_version == 3

    comment = await service.add_comment(item.id, body="Investigating")
    assert comment.body == "Investigating"
    assert (await service.get_work_item(item.id)).state_version == 4

    update = WorkItemUpdate(title="Fix SSO login bug", status=WorkItemStatus.IN_PROGRESS)
    with pytest.raises(ConcurrencyConflictError):
        await service.update_work_item(item.id, update, expected_version=3)
    unchanged = await service.get_work_item(item.id)
    assert unchanged.title == "Fix login bug"
    assert unchanged.state_version == 4

    detail = await service.update_work_item(item.id, update, expected_version=4)
    assert detail.work_item.title == "Fix SSO login bug"
    assert detail.work_item.state_version == 5
    assert [c.body for c in detail.comments] == ["Investigating"]


@pytest.mark.asyncio
async def test_every_accepted_mutation_advances_version_by_one(service: WorkItemService):
    item = await service.create_work_item(WorkItemCreate(title="Quarterly review"))
    previous = item.updated_at

    detail = await service.transition_status(item.id, WorkItemStatus.OPEN)
    versions = [detail.work_item.state_version]
    assert detail.work_item.updated_at > previous

    detail = await service.assign_work_item(item.id, "agent-7")
    versions.append(detail.work_item.state_version)
    assert detail.work_item.assignee_id == "agent-7"

    await service.add_attachment(item.id, AttachmentMetadata(file_name="notes.pdf", size=10))
    versions.append((await service.get_work_item(item.id)).state_version)

    detail = await service.update_work_item(
        item.id,
        WorkItemUpdate(title="Quarterly review", status=WorkItemStatus.OPEN, assignee_id="agent-7"),
        expected_version=versions[-1],
    )
    versions.append(detail.work_item.state_version)

    assert versions == [2, 3, 4, 5]


@pytest.mark.asyncio
async def test_update_writes_status_without_consulting_transitions(service: WorkItemService):
    item = await service.create_work_item(WorkItemCreate(title="Archive"))

    detail = await service.update_work_item(
        item.id,
        WorkItemUpdate(title="Archive", status=WorkItemStatus.CLOSED),
        expected_version=1,
    )

    assert detail.work_item.status == WorkItemStatus.CLOSED
    with pytest.raises(IllegalTransitionError):
        await service.transition_status(item.id, WorkItemStatus.OPEN)


@pytest.mark.asyncio
async def test_update_replaces_every_mutable_field(service: WorkItemService):
    item = await service.create_work_item(
        WorkItemCreate(title="Call back", description="Customer asked", priority="high", assignee_id="ana")
    )

    detail = await service.update_work_item(
        item.id,
        WorkItemUpdate(title="Call back", status=WorkItemStatus.DRAFT),
        expected_version=1,
    )

    assert detail.work_item.description is None
    assert detail.work_item.priority is None
    assert detail.work_item.assignee_id is None
    assert detail.work_item.created_at == item.created_at


@pytest.mark.asyncio
async def test_children_are_listed_newest_first_and_share_parent_timestamp(service: WorkItemService):
    item = await service.create_work_item(WorkItemCreate(title="Escalation"))
    first = await service.add_comment(item.id, body="first", author_id="ana")
    second = await service.add_comment(item.id, body="second")
    attachment = await service.add_attachment(
        item.id,
        AttachmentMetadata(file_name="trace.log", size=512, content_type="text/plain", storage_uri="s3://b/trace.log"),
    )

    detail = await service.get_work_item_detail(item.id)

    assert detail is not None
    assert [c.id for c in detail.comments] == [second.id, first.id]
    assert detail.comments[1].author_id == "ana"
    assert detail.attachments[0].id == attachment.id
    assert attachment.created_at == detail.work_item.updated_at
    assert detail.work_item.state_version == 4


@pytest.mark.asyncio
async def test_get_work_item_detail_returns_none_for_unknown_id(service: WorkItemService):
    assert await service.get_work_item_detail("missing") is None
    with pytest.raises(WorkItemNotFoundError):
        await service.get_work_item("missing")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "call",
    [
        lambda s: s.transition_status("missing", WorkItemStatus.OPEN),
        lambda s: s.assign_work_item("missing", "agent"),
        lambda s: s.add_comment("missing", body="hello"),
        lambda s: s.add_attachment("missing", AttachmentMetadata(file_name="a.txt")),
        lambda s: s.update_work_item(
            "missing", WorkItemUpdate(title="x", status=WorkItemStatus.OPEN), expected_version=1
        ),
        lambda s: s.delete_work_item("missing"),
    ],
)
async def test_operations_on_unknown_item_raise_not_found(service: WorkItemService, call):
    with pytest.raises(WorkItemNotFoundError):
        await call(service)


@pytest.mark.asyncio
async def test_list_clamps_paging_and_applies_filters(service: WorkItemService):
    for index in range(3):
        await service.create_work_item(WorkItemCreate(title=f"Printer jam {index}", assignee_id="ben"))
    other = await service.create_work_item(WorkItemCreate(title="Onboarding", description="printer access"))
    await service.transition_status(other.id, WorkItemStatus.OPEN)

    result = await service.list_work_items(WorkItemListQuery(page=0, page_size=1000))
    assert result.page == 1
    assert result.page_size == 200
    assert result.total_count == 4
    assert result.items[0].id == other.id

    result = await service.list_work_items(WorkItemListQuery(page=-3, page_size=0))
    assert result.page == 1
    assert result.page_size == 1
    assert len(result.items) == 1

    result = await service.list_work_items(WorkItemListQuery(search="  PRINTER ", assignee_id="ben"))
    assert result.total_count == 3

    result = await service.list_work_items(WorkItemListQuery(status=WorkItemStatus.OPEN))
    assert [i.id for i in result.items] == [other.id]

    result = await service.list_work_items(WorkItemListQuery(page=5, page_size=10))
    assert result.items == []
    assert result.total_count == 4

    result = await service.list_work_items(WorkItemListQuery(page=10**19, page_size=200))
    assert result.items == []
    assert result.total_count == 4
    assert (result.page - 1) * result.page_size <= 2**63 - 1


@pytest.mark.asyncio
async def test_validation_rejects_out_of_bounds_fields(service: WorkItemService):
    with pytest.raises(WorkItemValidationError):
        await service.create_work_item(WorkItemCreate(title="   "))
    with pytest.raises(WorkItemValidationError):
        await service.create_work_item(WorkItemCreate(title="x" * 201))

    item = await service.create_work_item(WorkItemCreate(title="x" * 200))

    with pytest.raises(WorkItemValidationError):
        await service.add_comment(item.id, body="")
    with pytest.raises(WorkItemValidationError):
        await service.add_comment(item.id, body="y" * 2001)
    with pytest.raises(WorkItemValidationError):
        await service.add_attachment(item.id, AttachmentMetadata(file_name="a.bin", size=-1))
    with pytest.raises(WorkItemValidationError):
        await service.assign_work_item(item.id, " ")

    assert (await service.get_work_item(item.id)).state_version == 1


@pytest.mark.asyncio
async def test_delete_removes_item_and_children(service: WorkItemService):
    item = await service.create_work_item(WorkItemCreate(title="Duplicate ticket"))
    await service.add_comment(item.id, body="dupe of #12")

    await service.delete_work_item(item.id)

    assert await service.get_work_item_detail(item.id) is None
    with pytest.raises(WorkItemNotFoundError):
        await service.delete_work_item(item.id)


@pytest.mark.asyncio
async def test_optimistic_write_retries_after_lost_race(
    repository: WorkItemRepository, metrics: MetricsRegistry, clock
):
    flaky = _flaky(repository, failures=1)
    service = WorkItemService(flaky, metrics=metrics, clock=clock)
    item = await service.create_work_item(WorkItemCreate(title="Flaky"))

    detail = await service.transition_status(item.id, WorkItemStatus.OPEN)

    assert detail.work_item.state_version == 2
    assert flaky.write_calls == 2
    assert metrics.counter("work_item_conflicts_total").value(labels={"operation": "transition"}) == 1
    assert metrics.counter("work_item_mutations_total").value(labels={"operation": "transition"}) == 1


@pytest.mark.asyncio
async def test_optimistic_write_gives_up_after_max_attempts(
    repository: WorkItemRepository, metrics: MetricsRegistry, clock
):
    flaky = _flaky(repository, failures=5)
    service = WorkItemService(flaky, metrics=metrics, clock=clock, max_attempts=2)
    item = await service.create_work_item(WorkItemCreate(title="Contended"))

    with pytest.raises(ConcurrencyConflictError):
        await service.add_comment(item.id, body="lost")

    assert flaky.write_calls == 2
    detail = await service.get_work_item_detail(item.id)
    assert detail is not None
    assert detail.comments == []
    assert detail.work_item.state_version == 1


@pytest.mark.asyncio
async def test_pinned_update_is_never_retried(repository: WorkItemRepository, metrics: MetricsRegistry, clock):
    flaky = _flaky(repository, failures=1)
    service = WorkItemService(flaky, metrics=metrics, clock=clock)
    item = await service.create_work_item(WorkItemCreate(title="Pinned"))

    with pytest.raises(ConcurrencyConflictError):
        await service.update_work_item(
            item.id, WorkItemUpdate(title="Changed", status=WorkItemStatus.DRAFT), expected_version=1
        )

    assert flaky.write_calls == 1
    assert metrics.counter("work_item_conflicts_total").value(labels={"operation": "update"}) == 1


@pytest.mark.asyncio
async def test_illegal_transition_is_counted(service: WorkItemService, metrics: MetricsRegistry):
    item = await service.create_work_item(WorkItemCreate(title="Counted"))

    with pytest.raises(IllegalTransitionError):
        await service.transition_status(item.id, WorkItemStatus.CLOSED)

    assert metrics.counter("work_item_illegal_transitions_total").value() == 1
    assert metrics.counter("work_item_mutations_total").value(labels={"operation": "create"}) == 1


@pytest.mark.asyncio
async def test_max_attempts_must_be_positive(repository: WorkItemRepository):
    with pytest.raises(ValueError):
        WorkItemService(repository, max_attempts=0)


@pytest.mark.asyncio
async def test_concurrent_updates_from_same_version_admit_one_winner(service: WorkItemService):
    item = await service.create_work_item(WorkItemCreate(title="Race"))

    results = await asyncio.gather(
        service.update_work_item(
            item.id, WorkItemUpdate(title="First", status=WorkItemStatus.DRAFT), expected_version=1
        ),
        service.update_work_item(
            item.id, WorkItemUpdate(title="Second", status=WorkItemStatus.DRAFT), expected_version=1
        ),
        return_exceptions=True,
    )

    winners = [result for result in results if not isinstance(result, BaseException)]
    losers = [result for result in results if isinstance(result, BaseException)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], ConcurrencyConflictError)
    stored = await service.get_work_item(item.id)
    assert stored.state_version == 2
    assert stored.title == winners[0].work_item.title


@pytest.mark.asyncio
async def test_concurrent_comments_all_land(repository: WorkItemRepository, metrics: MetricsRegistry, clock):
    service = WorkItemService(repository, metrics=metrics, clock=clock, max_attempts=5)
    item = await service.create_work_item(WorkItemCreate(title="Busy thread"))
    bodies = [f"note {index}" for index in range(4)]

    comments = await asyncio.gather(*(service.add_comment(item.id, body=body) for body in bodies))

    detail = await service.get_work_item_detail(item.id)
    assert detail is not None
    assert detail.work_item.state_version == 1 + len(bodies)
    assert sorted(c.body for c in detail.comments) == sorted(bodies)
    assert {c.id for c in comments} == {c.id for c in detail.comments}
