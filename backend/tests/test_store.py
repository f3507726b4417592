"""
Tests for the transactional entity store and the base repository.
"""
import pytest
from sqlalchemy import text

from sprintsync.db.models import ProjectModel
from sprintsync.infrastructure.exceptions import (
    ConflictError,
    InternalError,
    InvalidInputError,
    NotFoundError,
)
from sprintsync.models.common import new_id


async def seed(container, *names, owner="owner-1"):
    async with container.store.transaction() as uow:
        for name in names:
            await uow.projects.save(ProjectModel(id=new_id(), name=name, owner_id=owner, statuses=[]))


class TestTransactions:
    """All writes of a transaction commit together or not at all."""

    async def test_commit_runs_hooks(self, container):
        seen = []
        async with container.store.transaction() as uow:
            await uow.projects.save(ProjectModel(id=new_id(), name="Kept", owner_id="u1", statuses=[]))
            uow.after_commit("record", seen.append, "committed")

        assert seen == ["committed"]
        async with container.store.transaction() as uow:
            assert await uow.projects.count({"name": "Kept"}) == 1

    async def test_error_rolls_back_and_discards_hooks(self, container):
        seen = []
        with pytest.raises(RuntimeError, match="boom"):
            async with container.store.transaction() as uow:
                await uow.projects.save(ProjectModel(id=new_id(), name="Lost", owner_id="u1", statuses=[]))
                uow.after_commit("record", seen.append, "committed")
                raise RuntimeError("boom")

        assert seen == []
        async with container.store.transaction() as uow:
            assert await uow.projects.count({"name": "Lost"}) == 0

    async def test_duplicate_write_is_a_conflict(self, container):
        project_id = new_id()
        async with container.store.transaction() as uow:
            await uow.projects.save(ProjectModel(id=project_id, name="First", owner_id="u1", statuses=[]))

        seen = []
        with pytest.raises(ConflictError):
            async with container.store.transaction() as uow:
                await uow.projects.save(ProjectModel(id=project_id, name="Second", owner_id="u2", statuses=[]))
                uow.after_commit("record", seen.append, "committed")

        assert seen == []
        async with container.store.transaction() as uow:
            assert (await uow.projects.get(project_id)).name == "First"

    async def test_database_failure_is_internal(self, container):
        with pytest.raises(InternalError, match="Database operation failed"):
            async with container.store.transaction() as uow:
                await uow.session.execute(text("SELECT * FROM no_such_table"))


class TestBaseRepository:
    """Tests for the generic query helpers."""

    async def test_get_or_raise(self, container):
        async with container.store.transaction() as uow:
            with pytest.raises(NotFoundError, match="Project not found"):
                await uow.projects.get_or_raise(new_id(), "Project not found")

    async def test_list_filters_orders_and_pages(self, container):
        await seed(container, "Charlie", "Alpha", "Bravo")
        await seed(container, "Delta", owner="owner-2")

        async with container.store.transaction() as uow:
            names = [p.name for p in await uow.projects.list(filters={"owner_id": "owner-1"}, order_by="name")]
            assert names == ["Alpha", "Bravo", "Charlie"]

            page = await uow.projects.list(order_by="-name", limit=2, offset=1)
            assert [p.name for p in page] == ["Charlie", "Bravo"]

            assert await uow.projects.count({"owner_id": ["owner-1", "owner-2"]}) == 4
            # None-valued filters are ignored
            assert await uow.projects.count({"owner_id": None}) == 4

    async def test_bulk_update_and_delete(self, container):
        await seed(container, "Alpha", "Bravo")
        await seed(container, "Charlie", owner="owner-2")

        async with container.store.transaction() as uow:
            assert await uow.projects.update_many({"owner_id": "owner-1"}, {"description": "archived"}) == 2
            assert await uow.projects.delete_many({"owner_id": "owner-2"}) == 1

        async with container.store.transaction() as uow:
            remaining = await uow.projects.list(order_by="name")
            assert [(p.name, p.description) for p in remaining] == [
                ("Alpha", "archived"), ("Bravo", "archived"),
            ]

    async def test_bulk_none_filter_matches_null_only(self, container):
        await seed(container, "Alpha", "Bravo")

        async with container.store.transaction() as uow:
            assert await uow.projects.delete_many({"description": None, "name": "Alpha"}) == 1
            assert await uow.projects.update_many({"description": "archived"}, {"name": "Renamed"}) == 0

        async with container.store.transaction() as uow:
            await uow.projects.update_many({"name": "Bravo"}, {"description": "kept"})

        async with container.store.transaction() as uow:
            assert await uow.projects.delete_many({"description": None}) == 0
            assert [p.name for p in await uow.projects.list()] == ["Bravo"]

    @pytest.mark.parametrize("filters", [{"colour": "red"}, {}])
    async def test_bulk_rejects_unknown_or_missing_filters(self, container, filters):
        await seed(container, "Alpha", "Bravo")

        with pytest.raises(InvalidInputError):
            async with container.store.transaction() as uow:
                await uow.projects.delete_many(filters)

        async with container.store.transaction() as uow:
            assert await uow.projects.count() == 2
