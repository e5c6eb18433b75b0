"""Read-side views: an issue plus, at most, one level of children."""

from pgmt.errors import IssueNotFoundError
from pgmt.hierarchy import rules
from pgmt.models import Issue, IssueView
from pgmt.stores.base import IssueStore


class ViewBuilder:
    def __init__(self, store: IssueStore) -> None:
        self._store = store
        self._project_keys: dict[str, str] = {}

    def view_with_children(self, issue_id: str) -> IssueView:
        return self.view_issue(self._load(issue_id))

    def view_leaf(self, issue_id: str) -> IssueView:
        return self.leaf_of(self._load(issue_id))

    def view_issue(self, issue: Issue) -> IssueView:
        """Issue with its direct children rendered as leaves.

        Children are never expanded further, so stored data with deeper or cyclic
        chains still renders in one pass.
        """
        if not rules.can_have_children(issue.type):
            return self.leaf_of(issue)
        children = [self.leaf_of(child) for child in self._store.find_by_parent(issue.id) if child.id != issue.id]
        return self._build(issue, children)

    def leaf_of(self, issue: Issue) -> IssueView:
        return self._build(issue, None)

    def _load(self, issue_id: str) -> Issue:
        issue = self._store.find_by_id(issue_id)
        if issue is None:
            raise IssueNotFoundError(f"Issue not found: {issue_id}")
        return issue

    def _project_key(self, project_id: str) -> str | None:
        # Misses are not cached; the project may be created later.
        if project_id not in self._project_keys:
            project = self._store.find_project_by_id(project_id)
            if project is None:
                return None
            self._project_keys[project_id] = project.key
        return self._project_keys[project_id]

    def _build(self, issue: Issue, children: list[IssueView] | None) -> IssueView:
        parent = self._store.find_by_id(issue.parent_id) if issue.parent_id else None
        sprint = self._store.find_sprint_by_id(issue.sprint_id) if issue.sprint_id else None
        return IssueView(
            id=issue.id,
            key=issue.key,
            title=issue.title,
            description=issue.description,
            type=issue.type,
            priority=issue.priority,
            status=issue.status,
            project_key=self._project_key(issue.project_id),
            parent_id=issue.parent_id,
            parent_key=parent.key if parent else None,
            sprint_name=sprint.name if sprint else None,
            assignee=issue.assignee,
            story_points=issue.story_points,
            children=children,
        )
