"""
Tests for the room-scoped broadcast channel and the post-commit queue.
"""
import asyncio

from sprintsync.infrastructure.broadcast import BroadcastChannel, project_room, sprint_room
from sprintsync.infrastructure.post_commit import PostCommitHook, PostCommitQueue


class TestBroadcastChannel:
    """Tests for BroadcastChannel publish/join/leave."""

    async def test_publish_reaches_room_members_only(self, recorder):
        channel = BroadcastChannel()
        inside, outside = recorder(), recorder()
        await channel.join(inside, project_room("p1"))
        await channel.join(outside, project_room("p2"))

        delivered = await channel.publish(project_room("p1"), "sprint:created", {"id": "s1"})

        assert delivered == 1
        assert outside.messages == []
        message = inside.messages[0]
        assert message["event"] == "sprint:created"
        assert message["room"] == "project:p1"
        assert message["data"] == {"id": "s1"}
        assert message["timestamp"].endswith("Z")

    async def test_empty_room_is_not_an_error(self):
        channel = BroadcastChannel()
        assert await channel.publish(sprint_room("nobody"), "sprint:deleted", {}) == 0

    async def test_failed_send_drops_subscriber(self, recorder):
        channel = BroadcastChannel()
        good, broken = recorder(), recorder(fail=True)
        await channel.join(good, sprint_room("s1"))
        await channel.join(broken, sprint_room("s1"))
        await channel.join(broken, project_room("p1"))

        assert await channel.publish(sprint_room("s1"), "sprint:task:added", {}) == 1
        assert await channel.rooms_of(broken) == set()
        assert channel.stats()["dropped"] == 1
        assert len(good.messages) == 1

    async def test_leave_and_disconnect(self, recorder):
        channel = BroadcastChannel()
        sub = recorder()
        await channel.join(sub, project_room("p1"))
        await channel.join(sub, sprint_room("s1"))

        await channel.leave(sub, project_room("p1"))
        assert await channel.rooms_of(sub) == {"sprint:s1"}

        await channel.disconnect(sub)
        assert await channel.rooms_of(sub) == set()
        assert channel.stats()["rooms"] == 0


class TestPostCommitQueue:
    """Tests for post-commit hook dispatch."""

    async def test_sync_hooks_run_inline(self):
        queue = PostCommitQueue()
        seen = []
        queue.dispatch([PostCommitHook("record", seen.append, ("a",))])
        assert seen == ["a"]
        assert queue.completed == 1

    async def test_async_hooks_run_in_background(self):
        queue = PostCommitQueue()
        gate = asyncio.Event()
        seen = []

        async def slow(value):
            await gate.wait()
            seen.append(value)

        queue.dispatch([PostCommitHook("slow", slow, ("b",))])
        assert seen == []
        assert queue.pending == 1

        gate.set()
        await queue.drain()
        assert seen == ["b"]
        assert queue.pending == 0

    async def test_failures_are_logged_not_raised(self):
        queue = PostCommitQueue()
        seen = []

        def broken():
            raise RuntimeError("cache gone")

        async def broken_async():
            raise RuntimeError("socket gone")

        queue.dispatch([
            PostCommitHook("broken", broken),
            PostCommitHook("broken_async", broken_async),
            PostCommitHook("after", seen.append, ("still runs",)),
        ])
        await queue.drain()

        assert seen == ["still runs"]
        assert queue.failed == 2
