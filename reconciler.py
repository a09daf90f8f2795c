"""
Reconciliation between Asana tasks and their Google Tasks mirrors.

Each cycle works on two snapshots taken at the start of the cycle and runs
three passes:

1. Incomplete Asana tasks are mirrored: missing mirrors are created, stale
   ones are replaced (deleted and created again).
2. Completed mirrors complete their Asana task and are then deleted.
3. Completed Asana tasks delete their still incomplete mirrors.

Decisions never look at the effects of earlier passes in the same cycle;
those show up in the next cycle's snapshots.
"""

import logging
from dataclasses import dataclass
from datetime import tzinfo
from itertools import chain
from typing import List, Optional

from asana_tasks import REFERENCE_TIMEZONE, ForeignTask, due_to_canonical_string
from correlation import CorrelationCodec
from gtasks_mirror import MirrorTask
from snapshot import TaskSnapshot

logger = logging.getLogger(__name__)

MILLIS_SUFFIX = '.000Z'


@dataclass(frozen=True)
class SyncAction:
    """One corrective step decided by the reconciler."""

    def describe(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class CreateMirror(SyncAction):
    foreign: ForeignTask

    def describe(self) -> str:
        return f"Asana -> Google new task \"{self.foreign.name}\", creating in Google"


@dataclass(frozen=True)
class ReplaceMirror(SyncAction):
    """Stale mirror: deleted, then created again from the Asana task.

    The mirror gets a new Google id; edits made on the mirror are lost.
    """
    mirror: MirrorTask
    foreign: ForeignTask
    reason: str = ''

    def describe(self) -> str:
        return f"Asana -> Google task mismatch ({self.reason}), replacing Google task (Asana: \"{self.foreign.name}\")"


@dataclass(frozen=True)
class CompleteForeign(SyncAction):
    foreign_gid: str
    mirror: MirrorTask

    def describe(self) -> str:
        return f"Google -> Asana task \"{self.mirror.title}\" complete, completing Asana task {self.foreign_gid}"


@dataclass(frozen=True)
class DeleteMirror(SyncAction):
    mirror: MirrorTask
    reason: str = ''

    def describe(self) -> str:
        return f"Deleting task \"{self.mirror.title}\" from Google ({self.reason})"


@dataclass
class SyncReport:
    created: int = 0
    replaced: int = 0
    completed: int = 0
    deleted: int = 0

    def record(self, action: SyncAction):
        if isinstance(action, CreateMirror):
            self.created += 1
        elif isinstance(action, ReplaceMirror):
            self.replaced += 1
        elif isinstance(action, CompleteForeign):
            self.completed += 1
        elif isinstance(action, DeleteMirror):
            self.deleted += 1

    @property
    def total(self) -> int:
        return self.created + self.replaced + self.completed + self.deleted

    def __str__(self) -> str:
        return (f"{self.created} created, {self.replaced} replaced, "
                f"{self.completed} completed in Asana, {self.deleted} deleted from Google")


def mismatch_reason(mirror: MirrorTask, foreign: ForeignTask, codec: CorrelationCodec,
                    tz: tzinfo = REFERENCE_TIMEZONE) -> Optional[str]:
    """Why the mirror no longer reflects the Asana task, or None if it does.

    Notes are compared line by line over the shorter of the two: the mirror's
    lines before the separator against all of the Asana notes' lines. Extra
    trailing lines on either side are not a difference.
    """
    if mirror.title is None:
        return "title missing"
    if mirror.title != foreign.name:
        return "title differs"

    if mirror.due is None:
        return "due date missing"
    due = mirror.due
    if due.endswith(MILLIS_SUFFIX):
        due = due[:-len(MILLIS_SUFFIX)] + 'Z'
    if due != due_to_canonical_string(foreign, tz):
        return "due date differs"

    if mirror.notes is None:
        return "notes missing"
    for mirror_line, foreign_line in zip(codec.body_prefix(mirror.notes), codec.split_lines(foreign.notes)):
        if mirror_line != foreign_line:
            return "notes differ"

    return None


def is_equivalent(mirror: MirrorTask, foreign: ForeignTask, codec: Optional[CorrelationCodec] = None,
                  tz: tzinfo = REFERENCE_TIMEZONE) -> bool:
    return mismatch_reason(mirror, foreign, codec or CorrelationCodec(), tz) is None


class Reconciler:
    """Plans and applies the corrective actions for one sync cycle.

    Args:
        asana: Object with complete_task(gid)
        mirror_list: Object with create_task_from_foreign(task) and delete_task(id)
        codec: Correlation codec used to link mirrors to Asana tasks
        reference_tz: Zone used to turn timed due dates into calendar dates
    """

    def __init__(self, asana, mirror_list, codec: Optional[CorrelationCodec] = None,
                 reference_tz: tzinfo = REFERENCE_TIMEZONE):
        self.asana = asana
        self.mirror_list = mirror_list
        self.codec = codec or CorrelationCodec()
        self.reference_tz = reference_tz

    def find_mirror(self, foreign: ForeignTask, mirrors: TaskSnapshot[MirrorTask]) -> Optional[MirrorTask]:
        """First mirror, incomplete ones before completed ones, that carries the task's gid.

        Duplicate correlation ids are not detected; the first one wins.
        """
        for mirror in chain(mirrors.incomplete, mirrors.complete):
            if self.codec.decode(mirror.notes) == foreign.gid:
                return mirror
        return None

    def plan(self, foreign: TaskSnapshot[ForeignTask], mirrors: TaskSnapshot[MirrorTask]) -> List[SyncAction]:
        """Decide this cycle's actions from the two snapshots. Makes no remote calls.

        A mirror is deleted at most once per cycle: a completed mirror that
        Pass 1 already replaced still completes its Asana task in Pass 2, but
        is not deleted a second time.
        """
        actions: List[SyncAction] = []
        deleting = set()

        def delete(mirror: MirrorTask, reason: str):
            if mirror.id in deleting:
                logger.debug(f"Google task {mirror.id} already scheduled for deletion")
                return
            deleting.add(mirror.id)
            actions.append(DeleteMirror(mirror, reason))

        # Pass 1: mirror incomplete Asana tasks
        for task in foreign.incomplete:
            mirror = self.find_mirror(task, mirrors)
            if mirror is None:
                actions.append(CreateMirror(task))
                continue

            reason = mismatch_reason(mirror, task, self.codec, self.reference_tz)
            if reason is not None:
                deleting.add(mirror.id)
                actions.append(ReplaceMirror(mirror, task, reason))

        # Pass 2: completed mirrors complete Asana, then go away
        for mirror in mirrors.complete:
            gid = self.codec.decode(mirror.notes)
            if gid is not None:
                actions.append(CompleteForeign(gid, mirror))
            delete(mirror, "completed in Google")

        # Pass 3: Asana completions delete incomplete mirrors
        for task in foreign.complete:
            for mirror in mirrors.incomplete:
                if self.codec.decode(mirror.notes) == task.gid:
                    delete(mirror, "completed in Asana")

        return actions

    def apply(self, actions: List[SyncAction]) -> SyncReport:
        """Run the actions in order. The first failing call propagates."""
        report = SyncReport()
        for action in actions:
            logger.info(action.describe())
            if isinstance(action, CreateMirror):
                self.mirror_list.create_task_from_foreign(action.foreign)
            elif isinstance(action, ReplaceMirror):
                self.mirror_list.delete_task(action.mirror.id)
                self.mirror_list.create_task_from_foreign(action.foreign)
            elif isinstance(action, CompleteForeign):
                self.asana.complete_task(action.foreign_gid)
            elif isinstance(action, DeleteMirror):
                self.mirror_list.delete_task(action.mirror.id)
            else:
                raise TypeError(f"Unknown sync action: {action!r}")
            report.record(action)
        return report

    def reconcile(self, foreign: TaskSnapshot[ForeignTask], mirrors: TaskSnapshot[MirrorTask],
                  dry_run: bool = False) -> SyncReport:
        actions = self.plan(foreign, mirrors)

        if dry_run:
            report = SyncReport()
            for action in actions:
                logger.info(f"[DRY-RUN] {action.describe()}")
                report.record(action)
            return report

        return self.apply(actions)
