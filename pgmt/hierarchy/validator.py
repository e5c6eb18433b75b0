"""Hierarchy validation run before every create and every re-parent.

Rules are checked in a fixed order so that when several are broken at once the
reported one is always the same:

1. an Epic may not have a parent
2. a Subtask must have a parent
3. no parent → nothing more to check
4. the parent must exist
5. the parent's type must be able to contain the child's type
6. the child must not end up more than two edges below its root
7. (re-parent only) the new parent must not be a descendant of the issue

Validation never writes; persisting is the caller's job once it returns.
"""

import logging

from pgmt.errors import HierarchyError, IssueNotFoundError
from pgmt.hierarchy import rules
from pgmt.hierarchy.ancestry import AncestryWalker
from pgmt.models import Issue, IssueType
from pgmt.stores.base import IssueStore

logger = logging.getLogger(__name__)

MAX_DEPTH = 2


class HierarchyValidator:
    def __init__(self, store: IssueStore, walker: AncestryWalker | None = None) -> None:
        self._store = store
        self._walker = walker or AncestryWalker(store)

    @property
    def walker(self) -> AncestryWalker:
        return self._walker

    def validate_create(self, issue_type: IssueType, parent_id: str | None) -> Issue | None:
        """Check a new issue of issue_type placed under parent_id.

        Returns the resolved parent (or None) so callers don't have to fetch it again.
        """
        parent = self._check_placement(IssueType(issue_type), parent_id)
        logger.debug("Create validated: type=%s parent=%s", issue_type, parent_id)
        return parent

    def validate_reparent(self, issue_id: str, new_parent_id: str | None) -> Issue | None:
        issue = self._store.find_by_id(issue_id)
        if issue is None:
            raise IssueNotFoundError("Issue not found")

        parent = self._check_placement(issue.type, new_parent_id)
        if new_parent_id is not None:
            self._walker.detect_cycle(issue.id, new_parent_id)
        logger.debug("Re-parent validated: issue=%s new_parent=%s", issue.key, new_parent_id)
        return parent

    def check_parent_presence(self, issue_type: IssueType, has_parent: bool) -> None:
        """Rules 1 and 2, which depend only on whether a parent is given at all."""
        issue_type = IssueType(issue_type)
        if has_parent and not rules.can_have_parent(issue_type):
            raise HierarchyError(f"{issue_type.label} cannot have a parent")
        if not has_parent and issue_type == IssueType.SUBTASK:
            raise HierarchyError("Subtask requires a parent")

    def _check_placement(self, issue_type: IssueType, parent_id: str | None) -> Issue | None:
        self.check_parent_presence(issue_type, parent_id is not None)
        if parent_id is None:
            return None

        parent = self._store.find_by_id(parent_id)
        if parent is None:
            raise IssueNotFoundError("Parent not found")

        rules.check_container(parent.type, issue_type)

        if self._walker.would_exceed_depth(parent.id):
            raise HierarchyError(f"Maximum hierarchy depth exceeded ({MAX_DEPTH} levels)")
        return parent
