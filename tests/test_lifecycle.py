"""Unit tests for tasktrack.tasks.lifecycle — TaskLifecycleManager transitions."""

from datetime import timedelta

import pytest

from tasktrack.db.models import Comment, Task, User
from tasktrack.engine.config import LifecycleConfig
from tasktrack.engine.context import ANONYMOUS
from tasktrack.engine.errors import AuthorizationError, NotFoundError, StateError, ValidationError
from tasktrack.notifications.events import ASSIGNED, COMPLETED, NotificationEvent
from tasktrack.tasks.lifecycle import TaskLifecycleManager, validate_model
from tasktrack.tasks.schemas import TaskCreate


@pytest.fixture
def manager(session, clock):
    return TaskLifecycleManager(session, clock=clock)


def _create(manager, ctx, **fields):
    fields.setdefault("title", "Write report")
    return manager.create(fields, ctx).task


class TestValidateModel:

    def test_collects_field_errors(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_model(TaskCreate, {"title": "   ", "priority": "critical"})
        fields = {e["field"] for e in exc_info.value.validation_errors}
        assert fields == {"title", "priority"}

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            validate_model(TaskCreate, {"title": "x", "status": "completed"})


class TestCreate:

    def test_defaults(self, manager, member_ctx, clock):
        result = manager.create({"title": "  Write report  "}, member_ctx)
        task = result.task
        assert task.id is not None
        assert task.title == "Write report"
        assert task.status == "pending"
        assert task.priority == "medium"
        assert task.creator_id == member_ctx.actor_id
        assert task.assignee_id is None
        assert task.created_at == clock.now
        assert result.events == ()

    def test_empty_title(self, manager, member_ctx):
        with pytest.raises(ValidationError):
            manager.create({"title": ""}, member_ctx)

    def test_missing_title(self, manager, member_ctx):
        with pytest.raises(ValidationError):
            manager.create({}, member_ctx)

    def test_due_in_past_rejected(self, manager, member_ctx, clock):
        with pytest.raises(ValidationError) as exc_info:
            manager.create({"title": "x", "due_at": clock.now - timedelta(minutes=1)}, member_ctx)
        assert exc_info.value.validation_errors[0]["field"] == "due_at"

    def test_due_in_past_allowed_when_not_required(self, session, member_ctx, clock):
        manager = TaskLifecycleManager(session, LifecycleConfig(require_future_due=False), clock=clock)
        task = _create(manager, member_ctx, due_at=clock.now - timedelta(days=1))
        assert task.due_at == clock.now - timedelta(days=1)

    def test_naive_due_is_utc(self, manager, member_ctx, clock):
        naive = (clock.now + timedelta(days=1)).replace(tzinfo=None)
        task = _create(manager, member_ctx, due_at=naive)
        assert task.due_at == clock.now + timedelta(days=1)

    def test_with_assignee_emits_event(self, manager, manager_ctx, users):
        result = manager.create({"title": "x", "assignee_id": users["member"].id}, manager_ctx)
        assert result.task.assignee_id == users["member"].id
        assert result.events == (NotificationEvent(users["member"].id, ASSIGNED, result.task.id),)

    def test_member_cannot_create_with_assignee(self, manager, member_ctx, users):
        with pytest.raises(AuthorizationError):
            manager.create({"title": "x", "assignee_id": users["other"].id}, member_ctx)

    def test_unauthenticated(self, manager):
        with pytest.raises(AuthorizationError) as exc_info:
            manager.create({"title": "x"}, ANONYMOUS)
        assert exc_info.value.unauthenticated


class TestAssign:

    def test_assign_emits_one_event(self, manager, member_ctx, manager_ctx, users):
        task = _create(manager, member_ctx)
        result = manager.assign(task.id, users["other"].id, manager_ctx)
        assert result.changed
        assert result.task.assignee_id == users["other"].id
        assert result.events == (NotificationEvent(users["other"].id, ASSIGNED, task.id),)

    def test_same_assignee_is_noop(self, manager, member_ctx, manager_ctx, users, clock):
        task = _create(manager, member_ctx)
        manager.assign(task.id, users["other"].id, manager_ctx)
        stamp = task.updated_at
        clock.advance(minutes=5)

        again = manager.assign(task.id, users["other"].id, manager_ctx)
        assert not again.changed
        assert again.events == ()
        assert again.task.updated_at == stamp

    def test_reassign(self, manager, member_ctx, manager_ctx, users):
        task = _create(manager, member_ctx)
        manager.assign(task.id, users["other"].id, manager_ctx)
        result = manager.assign(task.id, users["member"].id, manager_ctx)
        assert result.events[0].recipient_id == users["member"].id

    def test_same_assignee_after_deactivation_is_noop(self, manager, session, member_ctx, manager_ctx, users):
        task = _create(manager, member_ctx)
        manager.assign(task.id, users["other"].id, manager_ctx)
        session.get(User, users["other"].id).is_active = False
        session.flush()

        again = manager.assign(task.id, users["other"].id, manager_ctx)
        assert not again.changed
        assert again.task.assignee_id == users["other"].id

    def test_unassign_has_no_event(self, manager, member_ctx, manager_ctx, users):
        task = _create(manager, member_ctx)
        manager.assign(task.id, users["other"].id, manager_ctx)
        result = manager.assign(task.id, None, manager_ctx)
        assert result.task.assignee_id is None
        assert result.events == ()

    def test_member_denied(self, manager, member_ctx, users):
        task = _create(manager, member_ctx)
        with pytest.raises(AuthorizationError):
            manager.assign(task.id, users["other"].id, member_ctx)

    def test_unknown_assignee(self, manager, member_ctx, manager_ctx):
        task = _create(manager, member_ctx)
        with pytest.raises(NotFoundError) as exc_info:
            manager.assign(task.id, 9999, manager_ctx)
        assert exc_info.value.entity == "user"

    def test_inactive_assignee(self, manager, member_ctx, manager_ctx, users):
        task = _create(manager, member_ctx)
        with pytest.raises(NotFoundError):
            manager.assign(task.id, users["inactive"].id, manager_ctx)

    def test_unknown_task(self, manager, manager_ctx, users):
        with pytest.raises(NotFoundError) as exc_info:
            manager.assign(9999, users["member"].id, manager_ctx)
        assert exc_info.value.entity == "task"


class TestStart:

    def test_start(self, manager, member_ctx):
        task = _create(manager, member_ctx)
        assert manager.start(task.id, member_ctx).task.status == "in_progress"

    def test_start_twice(self, manager, member_ctx):
        task = _create(manager, member_ctx)
        manager.start(task.id, member_ctx)
        with pytest.raises(StateError):
            manager.start(task.id, member_ctx)

    def test_non_owner_member(self, manager, member_ctx, other_ctx):
        task = _create(manager, member_ctx)
        with pytest.raises(AuthorizationError):
            manager.start(task.id, other_ctx)


class TestComplete:

    def test_complete_sets_time_and_notifies_creator(self, manager, member_ctx, clock):
        task = _create(manager, member_ctx)
        clock.advance(hours=2)
        result = manager.complete(task.id, member_ctx)
        assert result.task.status == "completed"
        assert result.task.completed_at == clock.now
        assert result.events == (NotificationEvent(member_ctx.actor_id, COMPLETED, task.id),)

    def test_complete_is_idempotent(self, manager, member_ctx, clock):
        task = _create(manager, member_ctx)
        first = manager.complete(task.id, member_ctx).task.completed_at
        clock.advance(hours=1)

        again = manager.complete(task.id, member_ctx)
        assert not again.changed
        assert again.events == ()
        assert again.task.completed_at == first

    def test_from_in_progress(self, manager, member_ctx):
        task = _create(manager, member_ctx)
        manager.start(task.id, member_ctx)
        assert manager.complete(task.id, member_ctx).task.status == "completed"

    def test_assignee_may_complete(self, manager, member_ctx, manager_ctx, other_ctx, users):
        task = _create(manager, member_ctx)
        manager.assign(task.id, users["other"].id, manager_ctx)
        assert manager.complete(task.id, other_ctx).changed

    def test_unchanged_past_due_is_accepted(self, manager, member_ctx, clock):
        due = clock.now + timedelta(hours=1)
        task = _create(manager, member_ctx, due_at=due)
        clock.advance(hours=2)

        result = manager.edit(task.id, {"title": "Late report", "due_at": due}, member_ctx)
        assert result.task.title == "Late report"
        assert result.task.due_at == due

    def test_stranger_denied(self, manager, member_ctx, other_ctx):
        task = _create(manager, member_ctx)
        with pytest.raises(AuthorizationError):
            manager.complete(task.id, other_ctx)

    def test_manager_edit_any(self, manager, member_ctx, manager_ctx):
        task = _create(manager, member_ctx)
        assert manager.complete(task.id, manager_ctx).task.status == "completed"

    def test_archived_is_state_error(self, manager, member_ctx):
        task = _create(manager, member_ctx)
        manager.complete(task.id, member_ctx)
        manager.archive(task.id, member_ctx)
        with pytest.raises(StateError):
            manager.complete(task.id, member_ctx)


class TestArchive:

    def test_archive_requires_completed(self, manager, member_ctx):
        task = _create(manager, member_ctx)
        with pytest.raises(StateError) as exc_info:
            manager.archive(task.id, member_ctx)
        assert exc_info.value.current_status == "pending"

    def test_archive(self, manager, member_ctx, clock):
        task = _create(manager, member_ctx)
        manager.complete(task.id, member_ctx)
        clock.advance(days=1)
        result = manager.archive(task.id, member_ctx)
        assert result.task.status == "archived"
        assert result.task.archived_at == clock.now
        assert result.task.completed_at is None
        assert result.events == ()

    def test_archive_twice(self, manager, member_ctx):
        task = _create(manager, member_ctx)
        manager.complete(task.id, member_ctx)
        manager.archive(task.id, member_ctx)
        for _ in range(2):
            with pytest.raises(StateError):
                manager.archive(task.id, member_ctx)

    def test_system_archive_without_actor(self, manager, member_ctx):
        task = _create(manager, member_ctx)
        manager.complete(task.id, member_ctx)
        assert manager.archive(task.id).task.status == "archived"

    def test_stranger_denied(self, manager, member_ctx, other_ctx):
        task = _create(manager, member_ctx)
        manager.complete(task.id, member_ctx)
        with pytest.raises(AuthorizationError):
            manager.archive(task.id, other_ctx)


class TestEdit:

    def test_edit_fields(self, manager, member_ctx, clock):
        task = _create(manager, member_ctx)
        clock.advance(minutes=1)
        result = manager.edit(task.id, {"title": "New", "priority": "high"}, member_ctx)
        assert result.task.title == "New"
        assert result.task.priority == "high"
        assert result.task.updated_at == clock.now

    def test_clear_due(self, manager, member_ctx, clock):
        task = _create(manager, member_ctx, due_at=clock.now + timedelta(days=1))
        assert manager.edit(task.id, {"due_at": None}, member_ctx).task.due_at is None

    def test_no_change_is_unchanged(self, manager, member_ctx):
        task = _create(manager, member_ctx)
        assert not manager.edit(task.id, {"title": "Write report"}, member_ctx).changed

    def test_status_not_editable(self, manager, member_ctx):
        task = _create(manager, member_ctx)
        with pytest.raises(ValidationError):
            manager.edit(task.id, {"status": "completed"}, member_ctx)

    def test_title_cannot_be_removed(self, manager, member_ctx):
        task = _create(manager, member_ctx)
        with pytest.raises(ValidationError):
            manager.edit(task.id, {"title": None}, member_ctx)

    def test_past_due(self, manager, member_ctx, clock):
        task = _create(manager, member_ctx)
        with pytest.raises(ValidationError):
            manager.edit(task.id, {"due_at": clock.now - timedelta(hours=1)}, member_ctx)

    def test_stranger_denied(self, manager, member_ctx, other_ctx):
        task = _create(manager, member_ctx)
        with pytest.raises(AuthorizationError):
            manager.edit(task.id, {"title": "Mine now"}, other_ctx)

    def test_archived_is_state_error(self, manager, member_ctx, admin_ctx):
        task = _create(manager, member_ctx)
        manager.complete(task.id, member_ctx)
        manager.archive(task.id, member_ctx)
        with pytest.raises(StateError):
            manager.edit(task.id, {"title": "late"}, admin_ctx)


class TestDelete:

    def test_admin_deletes_with_comments(self, manager, session, member_ctx, admin_ctx):
        task = _create(manager, member_ctx)
        session.add(Comment(task_id=task.id, author_id=member_ctx.actor_id, content="hi"))
        session.flush()

        manager.delete(task.id, admin_ctx)
        assert session.get(Task, task.id) is None
        assert session.query(Comment).count() == 0

    @pytest.mark.parametrize("ctx_name", ["manager_ctx", "member_ctx"])
    def test_non_admin_denied(self, manager, member_ctx, ctx_name, request):
        task = _create(manager, member_ctx)
        with pytest.raises(AuthorizationError):
            manager.delete(task.id, request.getfixturevalue(ctx_name))

    def test_archived_is_state_error(self, manager, member_ctx, admin_ctx):
        task = _create(manager, member_ctx)
        manager.complete(task.id, member_ctx)
        manager.archive(task.id, member_ctx)
        with pytest.raises(StateError):
            manager.delete(task.id, admin_ctx)


class TestReads:

    def test_get_hidden_from_stranger(self, manager, member_ctx, other_ctx):
        task = _create(manager, member_ctx)
        with pytest.raises(AuthorizationError):
            manager.get(task.id, other_ctx)

    def test_get_missing(self, manager, member_ctx):
        with pytest.raises(NotFoundError):
            manager.get(12345, member_ctx)

    def test_list_scoped_and_filtered(self, manager, member_ctx, other_ctx, manager_ctx):
        mine = _create(manager, member_ctx, priority="high")
        _create(manager, member_ctx, priority="low")
        _create(manager, other_ctx)

        assert len(manager.list(member_ctx)) == 2
        assert [t.id for t in manager.list(member_ctx, priority="high")] == [mine.id]
        assert len(manager.list(manager_ctx)) == 3
        assert len(manager.list(manager_ctx, limit=1, offset=1)) == 1


class TestScenario:

    def test_create_assign_complete_archive(self, manager, users, member_ctx, manager_ctx, other_ctx):
        a, c = users["member"], users["other"]

        task = manager.create({"title": "Quarterly plan"}, member_ctx).task
        assert task.status == "pending"

        assigned = manager.assign(task.id, c.id, manager_ctx)
        assert assigned.events == (NotificationEvent(c.id, ASSIGNED, task.id),)
        assert assigned.task.assignee_id == c.id

        with pytest.raises(StateError):
            manager.archive(task.id, member_ctx)

        completed = manager.complete(task.id, other_ctx)
        assert completed.task.status == "completed"
        assert completed.task.completed_at is not None
        assert completed.events == (NotificationEvent(a.id, COMPLETED, task.id),)

        assert manager.archive(task.id, member_ctx).task.status == "archived"
