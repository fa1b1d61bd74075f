"""Contract tests shared by the in-memory and SQLite repositories."""

import pytest

from orderflow.contracts import ProgressRecord, TransitionRecord, TransitionSource
from orderflow.errors import VersionConflict
import orderflow.persistence as persistence
from orderflow.persistence import InMemoryRepository, SQLiteRepository, get_repository
from orderflow.templates import default_templates


@pytest.fixture(params=["inmemory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteRepository(tmp_path / "orderflow.db")
    return InMemoryRepository()


def _initial(order_id: str = "o1", workflow_id: str = "standard-shipping") -> ProgressRecord:
    return ProgressRecord(
        order_id=order_id,
        workflow_id=workflow_id,
        current_stage_id="order-received",
        history=[
            TransitionRecord(to_stage_id="order-received", source=TransitionSource.SYSTEM_INIT)
        ],
    )


def _moved(record: ProgressRecord, stage_id: str) -> ProgressRecord:
    entry = TransitionRecord(
        from_stage_id=record.current_stage_id,
        to_stage_id=stage_id,
        source=TransitionSource.MANUAL,
        actor_id="admin",
    )
    return record.model_copy(
        update={
            "current_stage_id": stage_id,
            "history": [*record.history, entry],
            "version": record.version + 1,
        }
    )


@pytest.mark.asyncio
async def test_definitions_crud(repo):
    for template in default_templates():
        await repo.put_definition(template)

    by_id = await repo.get_definition("standard-shipping")
    assert by_id is not None
    assert [s.id for s in by_id.stages] == ["order-received", "processing", "shipped", "delivered"]

    default = await repo.get_default_definition()
    assert default is not None and default.id == "standard-shipping"

    assert len(await repo.list_definitions()) == 4

    await repo.delete_definition("local-pickup")
    assert await repo.get_definition("local-pickup") is None
    assert await repo.get_definition("missing") is None


@pytest.mark.asyncio
async def test_get_definition_by_slug(repo):
    template = default_templates()[0].model_copy(update={"id": "wf-1", "slug": "standard"})
    await repo.put_definition(template)
    found = await repo.get_definition("standard")
    assert found is not None
    assert found.id == "wf-1"


@pytest.mark.asyncio
async def test_create_progress_if_absent_is_idempotent(repo):
    first = await repo.create_progress_if_absent(_initial())
    second = await repo.create_progress_if_absent(
        _initial().model_copy(update={"auto_sync_enabled": False})
    )

    assert first.version == 1
    assert second.auto_sync_enabled is True
    assert len(second.history) == 1
    assert second.history[0].source is TransitionSource.SYSTEM_INIT


@pytest.mark.asyncio
async def test_create_progress_if_absent_returns_stored_record(repo):
    record = await repo.create_progress_if_absent(_initial())
    await repo.save_progress(_moved(record, "processing"), expected_version=1)

    stored = await repo.create_progress_if_absent(_initial())
    assert stored.current_stage_id == "processing"
    assert stored.version == 2
    assert [h.to_stage_id for h in stored.history] == ["order-received", "processing"]


@pytest.mark.asyncio
async def test_save_progress_compare_and_swap(repo):
    record = await repo.create_progress_if_absent(_initial())

    advanced = _moved(record, "processing")
    await repo.save_progress(advanced, expected_version=1)

    stored = await repo.get_progress("o1")
    assert stored.version == 2
    assert stored.current_stage_id == "processing"
    assert [h.to_stage_id for h in stored.history] == ["order-received", "processing"]
    assert stored.history[1].actor_id == "admin"

    # a writer still holding version 1 loses
    stale = _moved(record, "shipped")
    with pytest.raises(VersionConflict):
        await repo.save_progress(stale, expected_version=1)

    stored = await repo.get_progress("o1")
    assert stored.version == 2
    assert len(stored.history) == 2


@pytest.mark.asyncio
async def test_save_progress_requires_existing_record(repo):
    with pytest.raises(VersionConflict):
        await repo.save_progress(_moved(_initial(), "processing"), expected_version=1)


@pytest.mark.asyncio
async def test_returned_records_are_not_shared(repo):
    await repo.create_progress_if_absent(_initial())
    fetched = await repo.get_progress("o1")
    fetched.auto_sync_enabled = False
    assert (await repo.get_progress("o1")).auto_sync_enabled is True


@pytest.mark.asyncio
async def test_progress_queries(repo):
    await repo.create_progress_if_absent(_initial("o1"))
    o2 = await repo.create_progress_if_absent(_initial("o2"))
    await repo.save_progress(_moved(o2, "processing"), expected_version=1)
    await repo.create_progress_if_absent(_initial("o3", workflow_id="custom-order"))

    assert await repo.get_progress("missing") is None
    assert {r.order_id for r in await repo.list_progress()} == {"o1", "o2", "o3"}
    assert {r.order_id for r in await repo.list_progress("standard-shipping")} == {"o1", "o2"}
    assert await repo.occupied_stage_ids("standard-shipping") == {"order-received", "processing"}
    assert await repo.count_progress("standard-shipping") == 2
    assert await repo.count_progress("local-pickup") == 0


def test_get_repository_selects_backend(tmp_path, monkeypatch):
    monkeypatch.delenv("ORDERFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("ORDERFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.setattr(persistence, "_repository_instance", None)

    sqlite_repo = get_repository(f"sqlite://{tmp_path / 'wf.db'}")
    assert isinstance(sqlite_repo, SQLiteRepository)

    with pytest.raises(ValueError, match="Unsupported database backend"):
        get_repository("mysql://localhost/db")
