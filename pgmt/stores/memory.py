"""Dict-backed store. Used by tests and by the "memory" store setting."""

import threading

from pgmt.models import Issue, Project, Sprint
from pgmt.stores.base import IssueStore


class InMemoryIssueStore(IssueStore):
    def __init__(self) -> None:
        self._issues: dict[str, Issue] = {}
        self._projects: dict[str, Project] = {}
        self._sprints: dict[str, Sprint] = {}
        self._lock = threading.RLock()

    def _issues_where(self, **fields: object) -> list[Issue]:
        with self._lock:
            return [i for i in self._issues.values() if all(getattr(i, k) == v for k, v in fields.items())]

    def find_by_id(self, issue_id: str) -> Issue | None:
        with self._lock:
            return self._issues.get(issue_id)

    def find_by_key(self, key: str) -> Issue | None:
        return next(iter(self._issues_where(key=key)), None)

    def find_by_parent(self, parent_id: str) -> list[Issue]:
        return self._issues_where(parent_id=parent_id)

    def find_by_sprint(self, sprint_id: str) -> list[Issue]:
        return self._issues_where(sprint_id=sprint_id)

    def find_by_assignee(self, assignee: str) -> list[Issue]:
        return self._issues_where(assignee=assignee)

    def list_by_project(self, project_id: str) -> list[Issue]:
        return self._issues_where(project_id=project_id)

    def count_by_project(self, project_id: str) -> int:
        return len(self.list_by_project(project_id))

    def exists_by_key(self, key: str) -> bool:
        return self.find_by_key(key) is not None

    def save(self, issue: Issue) -> Issue:
        with self._lock:
            self._issues[issue.id] = issue
        return issue

    def delete(self, issue_id: str) -> None:
        with self._lock:
            self._issues.pop(issue_id, None)

    def save_project(self, project: Project) -> Project:
        with self._lock:
            self._projects[project.id] = project
        return project

    def find_project_by_key(self, key: str) -> Project | None:
        with self._lock:
            return next((p for p in self._projects.values() if p.key == key), None)

    def find_project_by_id(self, project_id: str) -> Project | None:
        with self._lock:
            return self._projects.get(project_id)

    def list_projects(self) -> list[Project]:
        with self._lock:
            return list(self._projects.values())

    def delete_project(self, project_id: str) -> None:
        with self._lock:
            self._projects.pop(project_id, None)

    def save_sprint(self, sprint: Sprint) -> Sprint:
        with self._lock:
            self._sprints[sprint.id] = sprint
        return sprint

    def find_sprint_by_id(self, sprint_id: str) -> Sprint | None:
        with self._lock:
            return self._sprints.get(sprint_id)

    def find_sprint_by_name(self, project_id: str, name: str) -> Sprint | None:
        with self._lock:
            return next((s for s in self._sprints.values() if s.project_id == project_id and s.name == name), None)

    def list_sprints(self, project_id: str) -> list[Sprint]:
        with self._lock:
            return [s for s in self._sprints.values() if s.project_id == project_id]

    def delete_sprint(self, sprint_id: str) -> None:
        with self._lock:
            self._sprints.pop(sprint_id, None)
