"""Issue, project and sprint operations: validate, allocate a key, persist.

Each public mutation runs under the service's write lock and the store's
transaction, which together play the part of the per-request transaction.
Hierarchy and field checks happen before anything is written, key allocation
included.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from pgmt.errors import (
    DuplicateKeyError,
    HierarchyError,
    IssueNotFoundError,
    PgmtError,
    ProjectNotEmptyError,
    ProjectNotFoundError,
    SprintNotFoundError,
)
from pgmt.hierarchy.ancestry import DEFAULT_MAX_STEPS, AncestryWalker
from pgmt.hierarchy.keys import DEFAULT_MAX_ATTEMPTS, KeyAllocator, KeySequence, LockedKeySequence
from pgmt.hierarchy.validator import HierarchyValidator
from pgmt.hierarchy.views import ViewBuilder
from pgmt.models import (
    DONE_STATUS,
    Issue,
    IssueCount,
    IssuePriority,
    IssueType,
    IssueView,
    Project,
    Sprint,
    SprintStatus,
)
from pgmt.stores.base import IssueStore

logger = logging.getLogger(__name__)

# Sentinel for "leave the field alone" where None is a meaningful new value.
UNSET: object = object()

M = TypeVar("M", bound=BaseModel)


def _validated(model: type[M], what: str, fields: dict) -> M:
    """Build a model, reporting the first field error as a PgmtError."""
    try:
        return model.model_validate(fields)
    except ValidationError as exc:
        err = exc.errors()[0]
        where = ".".join(str(part) for part in err["loc"])
        raise PgmtError(f"Invalid {what}: {where + ': ' if where else ''}{err['msg']}") from exc


class IssueService:
    def __init__(
        self,
        store: IssueStore,
        sequence: KeySequence | None = None,
        *,
        max_walk_steps: int = DEFAULT_MAX_STEPS,
        key_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self.store = store
        if sequence is None:
            sequence = store if isinstance(store, KeySequence) else LockedKeySequence(store.count_by_project)
        self.walker = AncestryWalker(store, max_steps=max_walk_steps)
        self.validator = HierarchyValidator(store, self.walker)
        self.keys = KeyAllocator(store, sequence, max_attempts=key_max_attempts)
        self.views = ViewBuilder(store)
        self._write_lock = threading.RLock()

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        with self._write_lock, self.store.transaction():
            yield

    # -- projects ------------------------------------------------------------

    def create_project(self, key: str, name: str, description: str | None = None) -> Project:
        project = _validated(Project, "project", {"key": key, "name": name, "description": description})
        with self._transaction():
            if self.store.find_project_by_key(key) is not None:
                raise DuplicateKeyError(f"Project key already exists: {key}")
            self.store.save_project(project)
        logger.info("Project created: %s", project.key)
        return project

    def get_project(self, key: str) -> Project:
        project = self.store.find_project_by_key(key)
        if project is None:
            raise ProjectNotFoundError(f"Project not found: {key}")
        return project

    def list_projects(self) -> list[Project]:
        return sorted(self.store.list_projects(), key=lambda p: p.key)

    def update_project(self, key: str, *, name: str | None = None, description: str | None = None) -> Project:
        """Rename or re-describe a project. The key itself never changes."""
        with self._transaction():
            project = self.get_project(key)
            changes: dict = {}
            if name is not None:
                changes["name"] = name
            if description is not None:
                changes["description"] = description
            if not changes:
                return project
            changes["updated_at"] = datetime.now(timezone.utc)
            updated = _validated(Project, f"update for {key}", {**project.model_dump(), **changes})
            self.store.save_project(updated)
        logger.info("Project updated: %s (%s)", key, ", ".join(sorted(changes)))
        return updated

    def delete_project(self, key: str, *, cascade: bool = False) -> int:
        """Delete a project. Returns how many issues went with it.

        A project that still holds issues is only removed when cascade is set.
        """
        with self._transaction():
            project = self.get_project(key)
            issues = self.store.list_by_project(project.id)
            if issues and not cascade:
                raise ProjectNotEmptyError(f"Project {key} still has {len(issues)} issues")
            for issue in issues:
                self.store.delete(issue.id)
            for sprint in self.store.list_sprints(project.id):
                self.store.delete_sprint(sprint.id)
            self.store.delete_project(project.id)
        logger.info("Project deleted: %s (%d issues)", key, len(issues))
        return len(issues)

    def issue_count(self, key: str) -> IssueCount:
        issues = self.store.list_by_project(self.get_project(key).id)
        return IssueCount(total=len(issues), completed=sum(1 for i in issues if i.status == DONE_STATUS))

    # -- sprints -------------------------------------------------------------

    def create_sprint(
        self,
        project_key: str,
        name: str,
        start_date: date,
        end_date: date,
        *,
        goal: str | None = None,
    ) -> Sprint:
        with self._transaction():
            project = self.get_project(project_key)
            sprint = _validated(
                Sprint,
                "sprint",
                {"project_id": project.id, "name": name, "goal": goal, "start_date": start_date, "end_date": end_date},
            )
            if self.store.find_sprint_by_name(project.id, name) is not None:
                raise DuplicateKeyError(f"Sprint already exists in {project_key}: {name}")
            self.store.save_sprint(sprint)
        logger.info("Sprint created: %s/%s", project_key, name)
        return sprint

    def get_sprint(self, project_key: str, name: str) -> Sprint:
        return self._sprint_in(self.get_project(project_key), name)

    def _sprint_in(self, project: Project, name: str) -> Sprint:
        sprint = self.store.find_sprint_by_name(project.id, name)
        if sprint is None:
            raise SprintNotFoundError(f"Sprint not found in {project.key}: {name}")
        return sprint

    def list_sprints(self, project_key: str) -> list[Sprint]:
        project = self.get_project(project_key)
        return sorted(self.store.list_sprints(project.id), key=lambda s: (s.start_date, s.name))

    def set_sprint_status(self, project_key: str, name: str, status: SprintStatus) -> Sprint:
        with self._transaction():
            sprint = self.get_sprint(project_key, name)
            updated = sprint.model_copy(update={"status": SprintStatus(status)})
            self.store.save_sprint(updated)
        logger.info("Sprint %s/%s is now %s", project_key, name, updated.status)
        return updated

    def sprint_issues(self, project_key: str, name: str) -> list[IssueView]:
        sprint = self.get_sprint(project_key, name)
        return self._leaves(self.store.find_by_sprint(sprint.id))

    # -- issues --------------------------------------------------------------

    def get_issue(self, key: str) -> Issue:
        issue = self.store.find_by_key(key)
        if issue is None:
            raise IssueNotFoundError(f"Issue not found: {key}")
        return issue

    def _resolve_parent(self, parent_key: str | None) -> str | None:
        if parent_key is None:
            return None
        parent = self.store.find_by_key(parent_key)
        if parent is None:
            raise IssueNotFoundError("Parent not found")
        return parent.id

    def _resolve_sprint(self, project: Project, sprint_name: str | None) -> str | None:
        if sprint_name is None:
            return None
        return self._sprint_in(project, sprint_name).id

    def create_issue(
        self,
        project_key: str,
        title: str,
        issue_type: IssueType,
        *,
        parent_key: str | None = None,
        description: str | None = None,
        priority: IssuePriority = IssuePriority.MEDIUM,
        status: str = "todo",
        assignee: str | None = None,
        story_points: int | None = None,
        sprint: str | None = None,
    ) -> Issue:
        issue_type = IssueType(issue_type)
        with self._transaction():
            project = self.get_project(project_key)
            # Presence rules come before the lookup so their message wins over "Parent not found".
            self.validator.check_parent_presence(issue_type, parent_key is not None)
            parent_id = self._resolve_parent(parent_key)
            self.validator.validate_create(issue_type, parent_id)
            sprint_id = self._resolve_sprint(project, sprint)

            # The key is filled in last so a rejected field never uses up a number.
            draft = _validated(
                Issue,
                "issue",
                {
                    "key": "",
                    "title": title,
                    "description": description,
                    "type": issue_type,
                    "priority": priority,
                    "status": status,
                    "project_id": project.id,
                    "parent_id": parent_id,
                    "sprint_id": sprint_id,
                    "assignee": assignee,
                    "story_points": story_points,
                },
            )
            issue = draft.model_copy(update={"key": self.keys.next_key(project.key, project.id)})
            self.store.save(issue)
        logger.info("Issue created: %s", issue.key)
        return issue

    def update_issue(
        self,
        key: str,
        *,
        title: str | None = None,
        description: str | None = None,
        priority: IssuePriority | None = None,
        status: str | None = None,
        assignee: object = UNSET,
        story_points: object = UNSET,
        parent_key: object = UNSET,
        sprint: object = UNSET,
    ) -> Issue:
        """Apply the given changes.

        ``parent_key=None`` detaches, ``assignee=None`` unassigns and ``sprint=None``
        takes the issue out of its sprint; UNSET leaves each alone.
        """
        with self._transaction():
            issue = self.get_issue(key)
            changes: dict = {}
            if title is not None:
                changes["title"] = title
            if description is not None:
                changes["description"] = description
            if priority is not None:
                changes["priority"] = priority
            if status is not None:
                changes["status"] = status
            if assignee is not UNSET:
                changes["assignee"] = assignee
            if story_points is not UNSET:
                changes["story_points"] = story_points

            if parent_key is not UNSET:
                self.validator.check_parent_presence(issue.type, parent_key is not None)
                new_parent_id = self._resolve_parent(parent_key)  # type: ignore[arg-type]
                if new_parent_id != issue.parent_id:
                    self.validator.validate_reparent(issue.id, new_parent_id)
                    changes["parent_id"] = new_parent_id

            if sprint is not UNSET:
                project = self.store.find_project_by_id(issue.project_id)
                if project is None:
                    raise ProjectNotFoundError(f"Project not found for {key}")
                sprint_id = self._resolve_sprint(project, sprint)  # type: ignore[arg-type]
                if sprint_id != issue.sprint_id:
                    changes["sprint_id"] = sprint_id

            if not changes:
                return issue

            changes["updated_at"] = datetime.now(timezone.utc)
            updated = _validated(Issue, f"update for {key}", {**issue.model_dump(), **changes})
            self.store.save(updated)
        logger.info("Issue updated: %s (%s)", key, ", ".join(sorted(changes)))
        return updated

    def delete_issue(self, key: str, *, cascade: bool = False) -> list[str]:
        """Delete an issue. Returns the keys removed, descendants first.

        An issue with children is only removed when cascade is set.
        """
        with self._transaction():
            issue = self.get_issue(key)
            doomed = self._descendants(issue)
            if doomed and not cascade:
                raise HierarchyError("Cannot delete an issue that has children")
            removed = []
            for node in [*doomed, issue]:
                self.store.delete(node.id)
                removed.append(node.key)
        logger.info("Issue deleted: %s", ", ".join(removed))
        return removed

    def _descendants(self, issue: Issue) -> list[Issue]:
        # Deepest first; bounded by the seen-set even if stored data loops.
        seen = {issue.id}
        ordered: list[Issue] = []
        frontier = [issue]
        while frontier:
            level = []
            for node in frontier:
                for child in self.store.find_by_parent(node.id):
                    if child.id not in seen:
                        seen.add(child.id)
                        level.append(child)
            ordered = level + ordered
            frontier = level
        return ordered

    # -- reads ---------------------------------------------------------------

    def _leaves(self, issues: list[Issue]) -> list[IssueView]:
        return [self.views.leaf_of(i) for i in sorted(issues, key=lambda i: i.created_at)]

    def list_issues(self, project_key: str) -> list[IssueView]:
        project = self.get_project(project_key)
        return self._leaves(self.store.list_by_project(project.id))

    def assigned_to(self, assignee: str) -> list[IssueView]:
        """Every issue assigned to someone, across all projects."""
        return self._leaves(self.store.find_by_assignee(assignee))

    def view(self, key: str) -> IssueView:
        return self.views.view_with_children(self.get_issue(key).id)

    def subtasks(self, key: str) -> list[IssueView]:
        parent = self.get_issue(key)
        return [self.views.leaf_of(child) for child in self.store.find_by_parent(parent.id)]

    def ancestry(self, key: str) -> list[Issue]:
        return self.walker.ancestors(self.get_issue(key).id)
