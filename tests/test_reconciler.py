"""Tests for the reconciliation passes."""

from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import pytest

from gtasks_mirror import GoogleTasksMirror, MirrorTask
from reconciler import (
    CompleteForeign,
    CreateMirror,
    DeleteMirror,
    Reconciler,
    ReplaceMirror,
    is_equivalent,
)
from sync_errors import GoogleTasksAPIError, MissingDueDateError

from .fakes import foreign_task, mirror_of, snapshot

DONE = '2024-01-02T10:00:00.000Z'
DONE_AT = datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)


class TestEquivalence:

    def test_fresh_mirror_is_equivalent(self):
        task = foreign_task()
        assert is_equivalent(mirror_of(task), task)

    def test_due_without_millis_is_equivalent(self):
        task = foreign_task()
        mirror = MirrorTask(id='G1', title=task.name, notes="get 2%\n---\nF1", due="2024-01-01T00:00:00Z")
        assert is_equivalent(mirror, task)

    def test_mirror_notes_longer_than_foreign(self):
        task = foreign_task(notes="line1\nline2")
        mirror = MirrorTask(id='G1', title=task.name, notes="line1\nline2\n---\nabc", due="2024-01-01T00:00:00.000Z")
        assert is_equivalent(mirror, task)

    def test_foreign_notes_longer_than_mirror(self):
        task = foreign_task(notes="line1\nline2\nline3")
        mirror = MirrorTask(id='G1', title=task.name, notes="line1\n---\nF1", due="2024-01-01T00:00:00.000Z")
        assert is_equivalent(mirror, task)

    def test_notes_with_unicode_line_separators(self):
        task = foreign_task(notes="para one\u2028---\u2028para two")
        assert is_equivalent(mirror_of(task), task)

        edited = foreign_task(notes="para one\u2028changed")
        assert not is_equivalent(mirror_of(task), edited)

    def test_notes_differ(self):
        task = foreign_task(notes="line1\nchanged")
        mirror = MirrorTask(id='G1', title=task.name, notes="line1\nline2\n---\nF1", due="2024-01-01T00:00:00.000Z")
        assert not is_equivalent(mirror, task)

    @pytest.mark.parametrize("field,value", [
        ('title', None),
        ('title', 'Buy oat milk'),
        ('due', None),
        ('due', '2024-01-02T00:00:00.000Z'),
        ('notes', None),
    ])
    def test_mismatch(self, field, value):
        task = foreign_task()
        fields = {'id': 'G1', 'title': task.name, 'notes': "get 2%\n---\nF1", 'due': '2024-01-01T00:00:00.000Z'}
        fields[field] = value
        assert not is_equivalent(MirrorTask(**fields), task)

    def test_due_compared_in_reference_zone(self, utc_minus_6):
        task = foreign_task(due_on=None, due_at=datetime(2024, 3, 16, 3, 0, tzinfo=timezone.utc))
        mirror = MirrorTask(id='G1', title=task.name, notes="get 2%\n---\nF1", due='2024-03-15T00:00:00.000Z')
        assert is_equivalent(mirror, task, tz=utc_minus_6)
        assert not is_equivalent(mirror, task, tz=timezone.utc)


class TestScenarios:

    def test_new_task_is_mirrored(self):
        service = MagicMock()
        service.tasks.return_value.insert.return_value.execute.return_value = {'id': 'NEW1'}
        mirror_list = GoogleTasksMirror(service, 'LIST1')
        asana = MagicMock()
        reconciler = Reconciler(asana, mirror_list)

        report = reconciler.reconcile(snapshot(incomplete=[foreign_task()]), snapshot())

        service.tasks.return_value.insert.assert_called_once_with(tasklist='LIST1', body={
            'title': 'Buy milk',
            'due': '2024-01-01T00:00:00Z',
            'notes': 'get 2%\n---\nF1',
        })
        service.tasks.return_value.delete.assert_not_called()
        asana.complete_task.assert_not_called()
        assert report.created == 1
        assert report.total == 1

    def test_completed_mirror_completes_asana_then_is_deleted(self, reconciler, calls):
        mirror = MirrorTask(id='G1', title='Buy milk', notes='get 2%\n---\nF1', completed=DONE)

        report = reconciler.reconcile(snapshot(), snapshot(complete=[mirror]))

        assert calls == [('complete', 'F1'), ('delete', 'G1')]
        assert report.completed == 1
        assert report.deleted == 1

    def test_orphaned_mirror_is_left_alone(self, reconciler, calls):
        orphan = MirrorTask(id='G1', title='Gone', notes='x\n---\nF1', due='2024-01-01T00:00:00.000Z')

        report = reconciler.reconcile(
            snapshot(incomplete=[foreign_task(gid='F2')], complete=[foreign_task(gid='F3', completed_at=DONE_AT)]),
            snapshot(incomplete=[orphan, mirror_of(foreign_task(gid='F2'), 'G2')]),
        )

        assert calls == []
        assert report.total == 0

    def test_synced_state_is_a_no_op(self, reconciler, calls):
        tasks = [
            foreign_task(gid='F1'),
            foreign_task(gid='F2', name='Call mom', notes=''),
            foreign_task(gid='F3', name='Multi', notes='a\nb\nc', due_on=date(2024, 2, 29)),
        ]
        mirrors = [mirror_of(task, f"G{i}") for i, task in enumerate(tasks)]

        report = reconciler.reconcile(snapshot(incomplete=tasks), snapshot(incomplete=mirrors))

        assert calls == []
        assert report.total == 0


class TestPassOne:

    def test_stale_mirror_is_replaced(self, reconciler, calls, mirror_list):
        task = foreign_task(name='Buy oat milk')
        stale = mirror_of(foreign_task(), 'G1')

        actions = reconciler.plan(snapshot(incomplete=[task]), snapshot(incomplete=[stale]))
        assert actions == [ReplaceMirror(stale, task, "title differs")]

        reconciler.apply(actions)
        assert calls == [('delete', 'G1'), ('create', 'F1')]
        assert mirror_list.created == [task]

    def test_incomplete_mirror_matched_before_completed(self, reconciler):
        task = foreign_task()
        incomplete = mirror_of(task, 'G-open')
        complete = mirror_of(task, 'G-done', completed=DONE)

        assert reconciler.find_mirror(task, snapshot(incomplete=[incomplete], complete=[complete])) is incomplete

    def test_duplicate_correlation_first_match_wins(self, reconciler, calls):
        task = foreign_task()
        current = mirror_of(task, 'G1')
        stale_duplicate = MirrorTask(id='G2', title='old', notes='old\n---\nF1', due='2023-12-31T00:00:00.000Z')

        reconciler.reconcile(snapshot(incomplete=[task]), snapshot(incomplete=[current, stale_duplicate]))
        assert calls == []

        calls.clear()
        reconciler.reconcile(snapshot(incomplete=[task]), snapshot(incomplete=[stale_duplicate, current]))
        assert calls == [('delete', 'G2'), ('create', 'F1')]

    def test_stale_completed_mirror_is_deleted_once(self, reconciler, calls):
        task = foreign_task(name='Renamed')
        completed_mirror = mirror_of(foreign_task(), 'G1', completed=DONE)

        reconciler.reconcile(snapshot(incomplete=[task]), snapshot(complete=[completed_mirror]))

        assert calls == [('delete', 'G1'), ('create', 'F1'), ('complete', 'F1')]

    def test_missing_due_date_is_fatal(self, reconciler, calls):
        task = foreign_task(due_on=None)
        mirror = MirrorTask(id='G1', title=task.name, notes='get 2%\n---\nF1', due='2024-01-01T00:00:00.000Z')

        with pytest.raises(MissingDueDateError):
            reconciler.reconcile(snapshot(incomplete=[task]), snapshot(incomplete=[mirror]))
        assert calls == []


class TestPassTwo:

    def test_untracked_completed_mirror_is_deleted(self, reconciler, calls):
        untracked = MirrorTask(id='G9', title='Hand made', notes='no footer', completed=DONE)
        no_notes = MirrorTask(id='G10', title='No notes', completed=DONE)

        actions = reconciler.plan(snapshot(), snapshot(complete=[untracked, no_notes]))

        assert actions == [
            DeleteMirror(untracked, "completed in Google"),
            DeleteMirror(no_notes, "completed in Google"),
        ]
        reconciler.apply(actions)
        assert calls == [('delete', 'G9'), ('delete', 'G10')]

    def test_equivalent_completed_mirror(self, reconciler, calls):
        task = foreign_task()
        mirror = mirror_of(task, 'G1', completed=DONE)

        actions = reconciler.plan(snapshot(incomplete=[task]), snapshot(complete=[mirror]))

        assert actions == [CompleteForeign('F1', mirror), DeleteMirror(mirror, "completed in Google")]


class TestPassThree:

    def test_asana_completion_deletes_mirror(self, reconciler, calls):
        task = foreign_task(completed_at=DONE_AT)
        mirror = mirror_of(task, 'G1')
        unrelated = mirror_of(foreign_task(gid='F2'), 'G2')

        reconciler.reconcile(snapshot(complete=[task]), snapshot(incomplete=[unrelated, mirror]))

        assert calls == [('delete', 'G1')]

    def test_every_duplicate_is_deleted(self, reconciler, calls):
        task = foreign_task(completed_at=DONE_AT)

        reconciler.reconcile(
            snapshot(complete=[task]),
            snapshot(incomplete=[mirror_of(task, 'G1'), mirror_of(task, 'G2')]),
        )

        assert calls == [('delete', 'G1'), ('delete', 'G2')]

    def test_completed_mirror_of_completed_task(self, reconciler, calls):
        task = foreign_task(completed_at=DONE_AT)
        mirror = mirror_of(task, 'G1', completed=DONE)

        reconciler.reconcile(snapshot(complete=[task]), snapshot(complete=[mirror]))

        assert calls == [('complete', 'F1'), ('delete', 'G1')]


class TestApply:

    def test_pass_order(self, reconciler):
        new = foreign_task(gid='F1')
        done_in_google = mirror_of(foreign_task(gid='F2'), 'G2', completed=DONE)
        done_in_asana = foreign_task(gid='F3', completed_at=DONE_AT)

        actions = reconciler.plan(
            snapshot(incomplete=[new], complete=[done_in_asana]),
            snapshot(incomplete=[mirror_of(done_in_asana, 'G3')], complete=[done_in_google]),
        )

        assert [type(a) for a in actions] == [CreateMirror, CompleteForeign, DeleteMirror, DeleteMirror]

    def test_first_failure_stops_the_cycle(self, reconciler, calls, mirror_list):
        mirror_list.fail_on_create = GoogleTasksAPIError("Failed", "create Google Task")
        done = mirror_of(foreign_task(gid='F2'), 'G2', completed=DONE)

        with pytest.raises(GoogleTasksAPIError):
            reconciler.reconcile(snapshot(incomplete=[foreign_task()]), snapshot(complete=[done]))
        assert calls == []

    def test_dry_run_makes_no_calls(self, reconciler, calls):
        done = mirror_of(foreign_task(gid='F2'), 'G2', completed=DONE)

        report = reconciler.reconcile(snapshot(incomplete=[foreign_task()]), snapshot(complete=[done]), dry_run=True)

        assert calls == []
        assert (report.created, report.completed, report.deleted) == (1, 1, 1)
