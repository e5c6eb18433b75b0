"""Abstract base class for issue record stores."""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager, nullcontext

from pgmt.models import Issue, Project, Sprint


class IssueStore(ABC):
    def transaction(self) -> AbstractContextManager[None]:
        """Hold the store exclusively across several calls.

        Stores shared between processes override this; in-process stores rely on
        the service's own lock.
        """
        return nullcontext()

    # -- issues --------------------------------------------------------------

    @abstractmethod
    def find_by_id(self, issue_id: str) -> Issue | None: ...

    @abstractmethod
    def find_by_key(self, key: str) -> Issue | None: ...

    @abstractmethod
    def find_by_parent(self, parent_id: str) -> list[Issue]: ...

    @abstractmethod
    def find_by_sprint(self, sprint_id: str) -> list[Issue]: ...

    @abstractmethod
    def find_by_assignee(self, assignee: str) -> list[Issue]: ...

    @abstractmethod
    def list_by_project(self, project_id: str) -> list[Issue]: ...

    @abstractmethod
    def count_by_project(self, project_id: str) -> int: ...

    @abstractmethod
    def exists_by_key(self, key: str) -> bool: ...

    @abstractmethod
    def save(self, issue: Issue) -> Issue: ...

    @abstractmethod
    def delete(self, issue_id: str) -> None: ...

    # -- projects ------------------------------------------------------------

    @abstractmethod
    def save_project(self, project: Project) -> Project: ...

    @abstractmethod
    def find_project_by_key(self, key: str) -> Project | None: ...

    @abstractmethod
    def find_project_by_id(self, project_id: str) -> Project | None: ...

    @abstractmethod
    def list_projects(self) -> list[Project]: ...

    @abstractmethod
    def delete_project(self, project_id: str) -> None: ...

    # -- sprints -------------------------------------------------------------

    @abstractmethod
    def save_sprint(self, sprint: Sprint) -> Sprint: ...

    @abstractmethod
    def find_sprint_by_id(self, sprint_id: str) -> Sprint | None: ...

    @abstractmethod
    def find_sprint_by_name(self, project_id: str, name: str) -> Sprint | None: ...

    @abstractmethod
    def list_sprints(self, project_id: str) -> list[Sprint]: ...

    @abstractmethod
    def delete_sprint(self, sprint_id: str) -> None: ...
