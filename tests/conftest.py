"""Shared test fixtures."""

from collections.abc import Callable
from dataclasses import dataclass

import pytest

from pgmt.models import Issue, IssueType, Project
from pgmt.service import IssueService
from pgmt.stores.memory import InMemoryIssueStore


@dataclass
class Tree:
    project: Project
    epic: Issue
    story: Issue
    subtask: Issue


@pytest.fixture
def store() -> InMemoryIssueStore:
    return InMemoryIssueStore()


@pytest.fixture
def service(store: InMemoryIssueStore) -> IssueService:
    return IssueService(store)


@pytest.fixture
def project(service: IssueService) -> Project:
    return service.create_project("PGM", "Mini PGM")


@pytest.fixture
def tree(service: IssueService, project: Project) -> Tree:
    """PGM-1 Epic › PGM-2 Story › PGM-3 Subtask."""
    epic = service.create_issue("PGM", "Checkout revamp", IssueType.EPIC)
    story = service.create_issue("PGM", "Pay with saved card", IssueType.STORY, parent_key=epic.key)
    subtask = service.create_issue("PGM", "Card vault API", IssueType.SUBTASK, parent_key=story.key)
    return Tree(project=project, epic=epic, story=story, subtask=subtask)


@pytest.fixture
def put(store: InMemoryIssueStore) -> Callable[..., Issue]:
    """Write an issue straight into the store, bypassing validation. Its id is the lower-cased key."""

    def _put(key: str, issue_type: IssueType, parent_id: str | None = None, project_id: str = "proj") -> Issue:
        return store.save(
            Issue(
                id=key.lower(),
                key=key,
                title=f"{issue_type.label} {key}",
                type=issue_type,
                project_id=project_id,
                parent_id=parent_id,
            )
        )

    return _put
