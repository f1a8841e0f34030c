"""Tests for the query engine: projects, tasks, hierarchy, calendar and stats."""

from datetime import date, datetime

import pytest

from taskiant.exceptions import ConstraintViolationError, StoreClosedError, ValidationError
from taskiant.persistence.repository import TaskRepository, build_update

DAY = "2024-01-15"


def assert_preorder(tasks):
    """Every task follows its parent, and subtrees are contiguous."""
    position = {t.id: i for i, t in enumerate(tasks)}
    by_id = {t.id: t for t in tasks}
    for task in tasks:
        if task.parent_id is not None and task.parent_id in by_id:
            parent = by_id[task.parent_id]
            assert position[parent.id] < position[task.id]
            assert task.depth == parent.depth + 1
            assert task.path.startswith(parent.path + "/")
    for i, task in enumerate(tasks):
        # Everything between a node and the end of its subtree is a descendant
        j = i + 1
        while j < len(tasks) and tasks[j].path.startswith(task.path + "/"):
            j += 1
        for later in tasks[j:]:
            assert not later.path.startswith(task.path + "/")


class TestBuildUpdate:
    """Tests for the partial update builder."""

    def test_only_present_fields(self):
        """Only recognized keys present in changes are set."""
        sql, params = build_update("tasks", ("title", "notes", "priority"), {"priority": 2, "title": "x"})
        assert sql == "UPDATE tasks SET title = ?, priority = ? WHERE id = ?"
        assert params == ["x", 2]

    def test_unknown_fields_ignored(self):
        """Unknown keys never reach the SQL."""
        sql, params = build_update("tasks", ("title",), {"title": "x", "id": 9, "evil; DROP": 1})
        assert "evil" not in sql
        assert params == ["x"]

    def test_none_is_a_value(self):
        """An explicit None clears the column."""
        sql, params = build_update("tasks", ("notes",), {"notes": None})
        assert sql == "UPDATE tasks SET notes = ? WHERE id = ?"
        assert params == [None]

    def test_empty_changes(self):
        """No recognized keys means no statement."""
        assert build_update("tasks", ("title",), {}) is None
        assert build_update("tasks", ("title",), {"colour": "red"}) is None


class TestProjects:
    """Tests for project operations."""

    def test_sort_order_appends(self, repo):
        """First project gets 0, the next max + 1."""
        work = repo.create_project("Work", icon="💼")
        home = repo.create_project("Home")
        assert work.sort_order == 0
        assert work.icon == "💼"
        assert home.sort_order == 1
        assert home.icon == "📁"

    def test_list_in_display_order(self, repo):
        """Projects are listed by sort_order."""
        a = repo.create_project("A")
        b = repo.create_project("B")
        repo.update_project(a.id, {"sort_order": 5})
        assert [p.name for p in repo.list_projects()] == ["B", "A"]
        assert repo.get_project(b.id).sort_order == 1

    def test_update_partial(self, repo):
        """Only given fields change."""
        project = repo.create_project("Work", icon="💼")
        updated = repo.update_project(project.id, {"name": "Office"})
        assert updated.name == "Office"
        assert updated.icon == "💼"

    def test_update_noop(self, repo):
        """An update with no recognized fields returns None and changes nothing."""
        project = repo.create_project("Work")
        assert repo.update_project(project.id, {}) is None
        assert repo.update_project(project.id, {"colour": "red"}) is None
        assert repo.get_project(project.id).name == "Work"

    def test_update_missing(self, repo):
        """Updating a missing project returns None."""
        assert repo.update_project(999, {"name": "x"}) is None

    def test_empty_name_rejected(self, repo):
        """Project names must not be empty."""
        with pytest.raises(ValidationError):
            repo.create_project("")
        project = repo.create_project("Work")
        with pytest.raises(ValidationError):
            repo.update_project(project.id, {"name": "  "})

    def test_delete(self, repo):
        """delete_project reports whether a row was removed."""
        project = repo.create_project("Work")
        assert repo.delete_project(project.id) is True
        assert repo.delete_project(project.id) is False
        assert repo.get_project(project.id) is None

    def test_delete_cascades(self, repo):
        """Deleting a project removes its tasks, subtasks and sessions."""
        project = repo.create_project("Work")
        parent = repo.create_task("Parent", project_id=project.id)
        child = repo.create_task("Child", project_id=project.id, parent_id=parent.id)
        grandchild = repo.create_task("Grandchild", parent_id=child.id)
        session = repo.start_pomodoro(child.id)

        repo.delete_project(project.id)

        assert repo.get_task(parent.id) is None
        assert repo.get_task(child.id) is None
        assert repo.get_task(grandchild.id) is None
        assert repo.get_pomodoro(session.id) is None


class TestTaskCrud:
    """Tests for creating, reading, updating and deleting tasks."""

    def test_create_defaults(self, repo):
        """New tasks get priority 4, one pomodoro target, no completion."""
        task = repo.create_task("Write report")
        assert task.priority == 4
        assert task.pomo_target == 1
        assert task.pomo_completed == 0
        assert task.is_completed is False
        assert task.completed_at is None
        assert task.created_at is not None

    def test_create_with_fields(self, repo):
        """All supplied fields are persisted."""
        project = repo.create_project("Work")
        task = repo.create_task(
            "Write report",
            project_id=project.id,
            notes="outline first",
            priority=1,
            due_date=DAY,
            pomo_target=3,
            start_time="09:30",
        )
        assert task.project_id == project.id
        assert task.notes == "outline first"
        assert task.priority == 1
        assert task.due_date == date(2024, 1, 15)
        assert task.pomo_target == 3
        assert task.start_time == "09:30"

    def test_accepts_date_objects(self, repo):
        """due_date may be a date instance."""
        task = repo.create_task("x", due_date=date(2024, 2, 29))
        assert task.due_date == date(2024, 2, 29)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"title": ""},
            {"title": "ok", "priority": 0},
            {"title": "ok", "priority": 5},
            {"title": "ok", "pomo_target": -1},
            {"title": "ok", "due_date": "15/01/2024"},
            {"title": "ok", "start_time": "25:00"},
            {"title": "ok", "notes": "x" * 1501},
        ],
    )
    def test_invalid_fields(self, repo, kwargs):
        """Invalid input raises ValidationError before touching the store."""
        with pytest.raises(ValidationError):
            repo.create_task(**kwargs)
        assert repo.get_all_active_tasks() == []

    def test_notes_at_limit(self, repo):
        """Notes exactly at the limit are accepted."""
        task = repo.create_task("x", notes="n" * 1500)
        assert len(task.notes) == 1500

    def test_custom_notes_limit(self, store):
        """The notes limit is configurable."""
        repo = TaskRepository(store, max_notes_length=10)
        with pytest.raises(ValidationError):
            repo.create_task("x", notes="12345678901")

    def test_missing_parent(self, repo):
        """A parent that does not exist violates the foreign key."""
        with pytest.raises(ConstraintViolationError):
            repo.create_task("orphan", parent_id=12345)

    def test_missing_project(self, repo):
        """A project that does not exist violates the foreign key."""
        with pytest.raises(ConstraintViolationError):
            repo.create_task("orphan", project_id=12345)

    def test_get_missing(self, repo):
        """A missing task is None, not an error."""
        assert repo.get_task(999) is None

    def test_update_partial(self, repo):
        """Only supplied fields change."""
        task = repo.create_task("Write report", priority=2, notes="keep")
        updated = repo.update_task(task.id, {"title": "Write full report"})
        assert updated.title == "Write full report"
        assert updated.priority == 2
        assert updated.notes == "keep"

    def test_update_noop(self, repo):
        """Empty or irrelevant changes return None and leave the row unchanged."""
        task = repo.create_task("Write report")
        assert repo.update_task(task.id, {}) is None
        assert repo.update_task(task.id, {"colour": "red", "completed_at": "2020-01-01"}) is None
        assert repo.get_task(task.id) == task

    def test_update_completion_sets_timestamp(self, repo):
        """is_completed true sets completed_at; false clears it."""
        task = repo.create_task("x")
        done = repo.update_task(task.id, {"is_completed": True})
        assert done.is_completed is True
        assert done.completed_at is not None
        undone = repo.update_task(task.id, {"is_completed": False})
        assert undone.is_completed is False
        assert undone.completed_at is None

    def test_update_keeps_completion_time(self, repo, store):
        """Re-sending is_completed=True leaves the original completed_at."""
        task = repo.create_task("x")
        store.connection.execute(
            "UPDATE tasks SET is_completed = 1, completed_at = '2020-01-01T10:00:00' WHERE id = ?",
            (task.id,),
        )
        updated = repo.update_task(task.id, {"is_completed": True, "title": "y"})
        assert updated.title == "y"
        assert updated.completed_at == datetime(2020, 1, 1, 10, 0)
        assert repo.get_stats(today=date(2024, 1, 15)).completed_today == 0

    def test_update_clears_optional_field(self, repo):
        """An explicit None clears notes and due_date."""
        task = repo.create_task("x", notes="n", due_date=DAY)
        updated = repo.update_task(task.id, {"notes": None, "due_date": None})
        assert updated.notes is None
        assert updated.due_date is None

    def test_update_missing(self, repo):
        """Updating a missing task returns None."""
        assert repo.update_task(999, {"title": "x"}) is None

    def test_reparent_to_self_rejected(self, repo):
        """A task cannot become its own parent."""
        task = repo.create_task("x")
        with pytest.raises(ValidationError):
            repo.update_task(task.id, {"parent_id": task.id})

    def test_reparent_into_subtree_rejected(self, repo):
        """A task cannot move under one of its descendants."""
        root = repo.create_task("root")
        child = repo.create_task("child", parent_id=root.id)
        grandchild = repo.create_task("grandchild", parent_id=child.id)
        with pytest.raises(ValidationError):
            repo.update_task(root.id, {"parent_id": grandchild.id})
        assert repo.get_task(root.id).parent_id is None

    def test_reparent_below_depth_limit_rejected(self, store):
        """Descendants deeper than max_tree_depth are still checked."""
        shallow = TaskRepository(store, max_tree_depth=3)
        root = shallow.create_task("level 0")
        parent_id = root.id
        for level in range(1, 7):
            parent_id = shallow.create_task(f"level {level}", parent_id=parent_id).id
        with pytest.raises(ValidationError):
            shallow.update_task(root.id, {"parent_id": parent_id})
        assert shallow.get_task(root.id).parent_id is None

    def test_reparent_elsewhere(self, repo):
        """Moving a task under an unrelated task works."""
        a = repo.create_task("a")
        b = repo.create_task("b")
        assert repo.update_task(b.id, {"parent_id": a.id}).parent_id == a.id

    def test_delete_cascades_to_descendants(self, repo):
        """Deleting a parent removes the whole subtree."""
        root = repo.create_task("root")
        child = repo.create_task("child", parent_id=root.id)
        grandchild = repo.create_task("grandchild", parent_id=child.id)
        sibling = repo.create_task("sibling")

        assert repo.delete_task(root.id) is True
        assert repo.get_task(child.id) is None
        assert repo.get_task(grandchild.id) is None
        assert repo.get_task(sibling.id) is not None
        assert repo.delete_task(root.id) is False

    def test_closed_store(self, repo, store):
        """Queries on a closed store raise StoreClosedError."""
        store.close()
        with pytest.raises(StoreClosedError):
            repo.list_projects()


class TestToggle:
    """Tests for toggle_task."""

    def test_toggle_on(self, repo):
        """Toggling an open task completes it."""
        task = repo.create_task("x")
        toggled = repo.toggle_task(task.id)
        assert toggled.is_completed is True
        assert toggled.completed_at is not None

    def test_toggle_twice_restores(self, repo):
        """Two toggles restore is_completed and completed_at exactly."""
        task = repo.create_task("x")
        repo.toggle_task(task.id)
        restored = repo.toggle_task(task.id)
        assert restored.is_completed == task.is_completed
        assert restored.completed_at == task.completed_at
        assert restored == task

    def test_toggle_missing(self, repo):
        """Toggling a missing task is a benign None."""
        assert repo.toggle_task(999) is None

    def test_toggle_after_project_delete(self, repo):
        """A task removed by a project cascade toggles to None."""
        project = repo.create_project("Work")
        task = repo.create_task("x", project_id=project.id)
        repo.delete_project(project.id)
        assert repo.toggle_task(task.id) is None


class TestHierarchy:
    """Tests for the recursive tree queries."""

    def test_date_scenario(self, repo):
        """Parent and child due on the same date come back parent first."""
        parent = repo.create_task("Write report", due_date=DAY, priority=1)
        child = repo.create_task("Outline", parent_id=parent.id, due_date=DAY)

        tasks = repo.get_tasks_by_date(DAY)
        assert [t.id for t in tasks] == [parent.id, child.id]
        assert tasks[0].depth == 0
        assert tasks[1].depth == 1

    def test_path_format(self, repo):
        """Paths are '/'-joined 10-digit zero-padded ids."""
        root = repo.create_task("root")
        child = repo.create_task("child", parent_id=root.id)
        tasks = repo.get_tasks(None)
        assert tasks[0].path == f"{root.id:010d}"
        assert tasks[1].path == f"{root.id:010d}/{child.id:010d}"

    def test_project_tree_preorder(self, repo):
        """A multi-level forest is returned in pre-order."""
        project = repo.create_project("Work")
        pid = project.id
        a = repo.create_task("A", project_id=pid)
        b = repo.create_task("B", project_id=pid)
        a1 = repo.create_task("A1", project_id=pid, parent_id=a.id)
        b1 = repo.create_task("B1", project_id=pid, parent_id=b.id)
        a2 = repo.create_task("A2", project_id=pid, parent_id=a.id)
        a1x = repo.create_task("A1x", project_id=pid, parent_id=a1.id)

        tasks = repo.get_tasks(pid)
        assert [t.title for t in tasks] == ["A", "A1", "A1x", "A2", "B", "B1"]
        assert [t.depth for t in tasks] == [0, 1, 2, 1, 0, 1]
        assert_preorder(tasks)
        assert {t.id for t in tasks} == {a.id, b.id, a1.id, b1.id, a2.id, a1x.id}

    def test_siblings_in_id_order_across_digit_boundary(self, repo):
        """Zero padding keeps id 10 after id 9."""
        root = repo.create_task("root")
        children = [repo.create_task(f"c{i}", parent_id=root.id) for i in range(12)]
        tasks = repo.get_tasks(None)
        assert [t.id for t in tasks[1:]] == [c.id for c in children]

    def test_depth_equals_ancestor_count(self, repo):
        """depth counts ancestors along a chain."""
        parent = None
        for i in range(6):
            parent = repo.create_task(f"level {i}", parent_id=parent.id if parent else None)
        tasks = repo.get_tasks(None)
        assert [t.depth for t in tasks] == list(range(6))

    def test_project_filter(self, repo):
        """Only trees rooted in the project are returned."""
        work = repo.create_project("Work")
        home = repo.create_project("Home")
        repo.create_task("work task", project_id=work.id)
        repo.create_task("home task", project_id=home.id)
        repo.create_task("unassigned")
        assert [t.title for t in repo.get_tasks(work.id)] == ["work task"]
        assert [t.title for t in repo.get_tasks(None)] == ["unassigned"]

    def test_children_follow_root_regardless_of_date(self, repo):
        """Subtasks of a dated root are included even without their own date."""
        root = repo.create_task("root", due_date=DAY)
        repo.create_task("undated child", parent_id=root.id)
        repo.create_task("other day", due_date="2024-01-16")
        assert [t.title for t in repo.get_tasks_by_date(DAY)] == ["root", "undated child"]

    def test_date_view_orders_by_priority_then_path(self, repo):
        """Roots due on a date are ordered by priority first."""
        low = repo.create_task("low", due_date=DAY, priority=4)
        high = repo.create_task("high", due_date=DAY, priority=1)
        tasks = repo.get_tasks_by_date(DAY)
        assert [t.id for t in tasks] == [high.id, low.id]

    def test_date_view_joins_project(self, repo):
        """Date views carry project name and icon."""
        project = repo.create_project("Work", icon="💼")
        repo.create_task("x", project_id=project.id, due_date=DAY)
        task = repo.get_tasks_by_date(DAY)[0]
        assert task.project_name == "Work"
        assert task.project_icon == "💼"

    def test_today_uses_given_date(self, repo):
        """get_tasks_today accepts an explicit today."""
        repo.create_task("x", due_date=DAY)
        assert len(repo.get_tasks_today(today=DAY)) == 1
        assert len(repo.get_tasks_today(today="2024-01-16")) == 0

    def test_today_defaults_to_current_date(self, repo):
        """Without an argument the local date is used."""
        repo.create_task("today", due_date=date.today())
        assert [t.title for t in repo.get_tasks_today()] == ["today"]

    def test_time_block_ordering(self, repo):
        """Timed tasks come first by start time, untimed ones last."""
        untimed = repo.create_task("untimed", due_date=DAY, priority=1)
        late = repo.create_task("late", due_date=DAY, start_time="14:00")
        early = repo.create_task("early", due_date=DAY, start_time="08:30", priority=3)
        tasks = repo.get_tasks_for_date(DAY)
        assert [t.id for t in tasks] == [early.id, late.id, untimed.id]

    def test_depth_limit(self, store):
        """Descendants beyond max_tree_depth are cut off."""
        repo = TaskRepository(store, max_tree_depth=2)
        parent = None
        for i in range(5):
            parent = repo.create_task(f"level {i}", parent_id=parent.id if parent else None)
        assert [t.depth for t in repo.get_tasks(None)] == [0, 1, 2]

    def test_subtree(self, repo):
        """get_subtree returns the task and its descendants only."""
        root = repo.create_task("root")
        child = repo.create_task("child", parent_id=root.id)
        grandchild = repo.create_task("grandchild", parent_id=child.id)
        repo.create_task("other")
        subtree = repo.get_subtree(child.id)
        assert [t.id for t in subtree] == [child.id, grandchild.id]
        assert [t.depth for t in subtree] == [0, 1]


class TestTodayMigration:
    """Tests for move_to_today and copy_to_today."""

    def test_move_to_today(self, repo):
        """move_to_today reschedules the same task."""
        task = repo.create_task("x", due_date="2024-01-01")
        moved = repo.move_to_today(task.id, today=DAY)
        assert moved.id == task.id
        assert moved.due_date == date(2024, 1, 15)

    def test_move_defaults_to_today(self, repo):
        """Without today the local date is used."""
        task = repo.create_task("x")
        assert repo.move_to_today(task.id).due_date == date.today()

    def test_move_missing(self, repo):
        """Moving a missing task returns None."""
        assert repo.move_to_today(999) is None

    def test_copy_is_detached(self, repo):
        """The copy keeps content but has no parent and today's date."""
        project = repo.create_project("Work")
        parent = repo.create_task("parent", project_id=project.id)
        child = repo.create_task(
            "child", project_id=project.id, parent_id=parent.id, notes="n", priority=2, pomo_target=4
        )
        repo.create_task("grandchild", parent_id=child.id)

        copy = repo.copy_to_today(child.id, today=DAY)
        assert copy.id != child.id
        assert copy.parent_id is None
        assert copy.due_date == date(2024, 1, 15)
        assert (copy.title, copy.notes, copy.priority, copy.pomo_target, copy.project_id) == (
            "child",
            "n",
            2,
            4,
            project.id,
        )
        assert len(repo.get_subtree(copy.id)) == 1
        assert repo.get_task(child.id).parent_id == parent.id

    def test_copy_missing(self, repo):
        """Copying a missing task returns None."""
        assert repo.copy_to_today(999) is None


class TestActiveTasks:
    """Tests for get_all_active_tasks."""

    def test_excludes_completed_and_orders(self, repo):
        """Open tasks by priority, then due date with undated last."""
        undated = repo.create_task("undated", priority=1)
        later = repo.create_task("later", priority=1, due_date="2024-02-01")
        sooner = repo.create_task("sooner", priority=1, due_date="2024-01-01")
        low = repo.create_task("low", priority=3, due_date="2023-01-01")
        done = repo.create_task("done", priority=1)
        repo.toggle_task(done.id)

        ids = [t.id for t in repo.get_all_active_tasks()]
        assert ids == [sooner.id, later.id, undated.id, low.id]


class TestTimeBlocking:
    """Tests for time block updates and queries."""

    def test_update_time_block(self, repo):
        """Only due_date and start_time are touched."""
        task = repo.create_task("x", notes="keep")
        updated = repo.update_task_time_block(task.id, {"due_date": DAY, "start_time": "10:00"})
        assert updated.start_time == "10:00"
        assert updated.due_date == date(2024, 1, 15)
        assert updated.notes == "keep"

    def test_update_time_block_ignores_other_fields(self, repo):
        """Other keys are not applied through the time block update."""
        task = repo.create_task("x")
        assert repo.update_task_time_block(task.id, {"title": "changed"}) is None
        assert repo.get_task(task.id).title == "x"

    def test_clear_start_time(self, repo):
        """None removes a task from the time grid."""
        task = repo.create_task("x", due_date=DAY, start_time="10:00")
        assert repo.update_task_time_block(task.id, {"start_time": None}).start_time is None

    def test_invalid_start_time(self, repo):
        """start_time must be HH:MM."""
        task = repo.create_task("x")
        with pytest.raises(ValidationError):
            repo.update_task_time_block(task.id, {"start_time": "9am"})

    def test_time_blocked_tasks(self, repo):
        """Only timed tasks for the day, earliest first."""
        repo.create_task("untimed", due_date=DAY)
        b = repo.create_task("b", due_date=DAY, start_time="11:00")
        a = repo.create_task("a", due_date=DAY, start_time="07:15")
        repo.create_task("other day", due_date="2024-01-16", start_time="06:00")
        assert [t.id for t in repo.get_time_blocked_tasks(DAY)] == [a.id, b.id]


class TestMonthAggregate:
    """Tests for get_tasks_for_month."""

    def test_counts_per_day(self, repo):
        """Totals split into completed and incomplete per day."""
        repo.create_task("a", due_date="2024-01-15")
        done = repo.create_task("b", due_date="2024-01-15")
        repo.toggle_task(done.id)
        repo.create_task("c", due_date="2024-01-31")
        repo.create_task("next month", due_date="2024-02-01")
        repo.create_task("last month", due_date="2023-12-31")

        days = repo.get_tasks_for_month(2024, 1)
        assert [d.due_date for d in days] == [date(2024, 1, 15), date(2024, 1, 31)]
        assert (days[0].total_tasks, days[0].completed_tasks, days[0].incomplete_tasks) == (2, 1, 1)
        assert (days[1].total_tasks, days[1].completed_tasks, days[1].incomplete_tasks) == (1, 0, 1)

    def test_december_rollover(self, repo):
        """December covers up to the first of January of the next year."""
        repo.create_task("nye", due_date="2024-12-31")
        repo.create_task("new year", due_date="2025-01-01")
        days = repo.get_tasks_for_month(2024, 12)
        assert [d.due_date for d in days] == [date(2024, 12, 31)]

    def test_invalid_month(self, repo):
        """Months outside 1-12 are rejected."""
        with pytest.raises(ValidationError):
            repo.get_tasks_for_month(2024, 13)

    def test_empty_month(self, repo):
        """A month without tasks is an empty list."""
        assert repo.get_tasks_for_month(2030, 6) == []


class TestStats:
    """Tests for get_stats."""

    def test_empty_store(self, repo):
        """All counters start at zero."""
        stats = repo.get_stats(today=DAY)
        assert stats.to_dict() == {
            "today_total": 0,
            "today_completed": 0,
            "all_total": 0,
            "all_completed": 0,
            "completed_today": 0,
            "pomos_today": 0,
        }

    def test_counts(self, repo):
        """Due-today, all-time, completed-today and pomodoro counts."""
        today = date.today().isoformat()
        due = repo.create_task("due today", due_date=today)
        repo.create_task("also due", due_date=today)
        old = repo.create_task("old", due_date="2000-01-01")
        repo.toggle_task(due.id)
        repo.toggle_task(old.id)
        session = repo.start_pomodoro(due.id)
        repo.complete_pomodoro(session.id)
        repo.start_pomodoro(due.id)

        stats = repo.get_stats()
        assert stats.today_total == 2
        assert stats.today_completed == 1
        assert stats.all_total == 3
        assert stats.all_completed == 2
        # Completed today regardless of due date
        assert stats.completed_today == 2
        assert stats.pomos_today == 1
