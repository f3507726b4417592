"""
Tests for sprint progress computation.

Completion is decided by the `terminal` flag on the project's statuses, not
by a fixed "Done" or "Completed" label.
"""
import pytest

from sprintsync.models.project import ProjectCreate, StatusDefinition, StatusVocabulary
from sprintsync.models.sprint import SprintCreate
from sprintsync.models.task import TaskCreate, TaskUpdate
from sprintsync.services.progress_engine import completion_percentage

from conftest import OWNER


class TestCompletionPercentage:
    """Tests for the rounding rule."""

    @pytest.mark.parametrize("done,total,expected", [
        (0, 0, 0),
        (0, 5, 0),
        (1, 2, 50),
        (1, 3, 33),
        (2, 3, 67),
        (1, 8, 13),
        (1, 200, 1),
        (3, 3, 100),
    ])
    def test_round_half_up(self, done, total, expected):
        assert completion_percentage(done, total) == expected


async def _version(container, sprint_id):
    async with container.store.transaction() as uow:
        row = await uow.sprints.get(sprint_id)
        return row.version_id, row.progress_percentage


class TestProgressEngine:
    """Tests for ProgressEngine against the store."""

    async def test_empty_sprint_is_zero(self, container, project):
        sprint = await container.sprints.create_sprint(project.id, SprintCreate(name="Empty"), OWNER)
        result = await container.sprints.recalculate_progress(sprint.id, OWNER)
        assert result.progress_percentage == 0

    async def test_default_vocabulary_counts_done(self, container, project, make_task):
        sprint = await container.sprints.create_sprint(project.id, SprintCreate(name="Sprint 1"), OWNER)
        for status in ("Done", "Doing", "Done"):
            task = await make_task(status=status)
            await container.sprints.add_task_to_sprint(sprint.id, task.id, OWNER)

        _, progress = await _version(container, sprint.id)
        assert progress == 67

    async def test_terminal_marker_decides_completion(self, container):
        statuses = [
            StatusDefinition(name="Backlog"),
            StatusDefinition(name="Completed"),
            StatusDefinition(name="Shipped", terminal=True),
        ]
        project = await container.projects.create_project(
            ProjectCreate(name="Custom", statuses=statuses), OWNER
        )
        sprint = await container.sprints.create_sprint(project.id, SprintCreate(name="Custom 1"), OWNER)
        for status in ("Completed", "Shipped"):
            task = await container.tasks.create_task(project.id, TaskCreate(title=status, status=status), OWNER)
            await container.sprints.add_task_to_sprint(sprint.id, task.id, OWNER)

        # "Completed" is only a label here; "Shipped" is the terminal status
        _, progress = await _version(container, sprint.id)
        assert progress == 50

    async def test_changing_terminal_markers_recomputes(self, container, project, make_task):
        sprint = await container.sprints.create_sprint(project.id, SprintCreate(name="Sprint 1"), OWNER)
        task = await make_task(status="Testing")
        await container.sprints.add_task_to_sprint(sprint.id, task.id, OWNER)
        assert (await _version(container, sprint.id))[1] == 0

        vocabulary = StatusVocabulary(statuses=[
            StatusDefinition(name="ToDo"),
            StatusDefinition(name="Doing"),
            StatusDefinition(name="Testing", terminal=True),
            StatusDefinition(name="Done", terminal=True),
        ])
        await container.projects.update_statuses(project.id, vocabulary, OWNER)

        assert (await _version(container, sprint.id))[1] == 100

    async def test_recalculate_is_idempotent(self, container, project, make_task):
        sprint = await container.sprints.create_sprint(project.id, SprintCreate(name="Sprint 1"), OWNER)
        task = await make_task(status="ToDo")
        await container.sprints.add_task_to_sprint(sprint.id, task.id, OWNER)
        await container.tasks.update_task(task.id, TaskUpdate(status="Done"), OWNER)

        first = await container.sprints.recalculate_progress(sprint.id, OWNER)
        before = await _version(container, sprint.id)
        second = await container.sprints.recalculate_progress(sprint.id, OWNER)
        after = await _version(container, sprint.id)

        assert first.progress_percentage == second.progress_percentage == 100
        assert before == after

    async def test_task_status_change_updates_progress(self, container, project, make_task):
        sprint = await container.sprints.create_sprint(project.id, SprintCreate(name="Sprint 1"), OWNER)
        task = await make_task(status="ToDo")
        await container.sprints.add_task_to_sprint(sprint.id, task.id, OWNER)

        await container.tasks.update_task(task.id, TaskUpdate(status="Done"), OWNER)
        assert (await _version(container, sprint.id))[1] == 100

        await container.tasks.update_task(task.id, TaskUpdate(status="Doing"), OWNER)
        assert (await _version(container, sprint.id))[1] == 0

    async def test_task_deletion_updates_progress(self, container, project, make_task):
        sprint = await container.sprints.create_sprint(project.id, SprintCreate(name="Sprint 1"), OWNER)
        done = await make_task(status="Done")
        todo = await make_task(status="ToDo")
        await container.sprints.add_task_to_sprint(sprint.id, done.id, OWNER)
        await container.sprints.add_task_to_sprint(sprint.id, todo.id, OWNER)
        assert (await _version(container, sprint.id))[1] == 50

        await container.tasks.delete_task(todo.id, OWNER)

        fetched = await container.sprints.get_sprint(sprint.id, OWNER)
        assert fetched.task_ids == [done.id]
        assert fetched.progress_percentage == 100
