"""Parent-chain walks: cycle detection and the depth cap."""

import logging

from pgmt.errors import CycleError, IssueNotFoundError
from pgmt.models import Issue
from pgmt.stores.base import IssueStore

logger = logging.getLogger(__name__)

# A correct hierarchy never needs more than two lookups. Anything beyond this is corrupt data.
DEFAULT_MAX_STEPS = 64


class AncestryWalker:
    def __init__(self, store: IssueStore, max_steps: int = DEFAULT_MAX_STEPS) -> None:
        if max_steps < 1:
            raise ValueError("max_steps must be at least 1")
        self._store = store
        self._max_steps = max_steps

    def detect_cycle(self, issue_id: str, candidate_parent_id: str) -> None:
        """Raise CycleError if making candidate_parent_id the parent of issue_id closes a loop.

        Walks upward from the candidate. A parent reference that no longer resolves ends
        the walk with no cycle found; the chain may be re-parented concurrently and the
        walk only reports what it actually saw.
        """
        logger.debug("Checking ancestry: issue=%s candidate_parent=%s", issue_id, candidate_parent_id)
        if issue_id == candidate_parent_id:
            raise CycleError("Cannot set an issue as its own parent")

        visited: set[str] = set()
        current: str | None = candidate_parent_id
        steps = 0

        while current is not None:
            if current == issue_id:
                raise CycleError("Cannot create circular parent-child relationship")
            if current in visited:
                logger.error("Circular reference already present in stored data at %s", current)
                raise CycleError("Circular reference detected in parent chain")
            steps += 1
            if steps > self._max_steps:
                logger.error("Parent chain from %s exceeds %d steps", candidate_parent_id, self._max_steps)
                raise CycleError("Parent chain is too long; stored hierarchy is corrupt")
            visited.add(current)

            node = self._store.find_by_id(current)
            if node is None:
                logger.debug("Dangling parent reference %s; ancestry walk stops", current)
                break
            current = node.parent_id

    def would_exceed_depth(self, candidate_parent_id: str) -> bool:
        """True if a child under candidate_parent_id would sit more than two edges below its root.

        That happens only when the candidate's own parent is itself nested. At most two
        lookups; a dangling grandparent reference counts as the end of the chain.
        """
        parent = self._store.find_by_id(candidate_parent_id)
        if parent is None:
            raise IssueNotFoundError("Parent not found")
        if parent.parent_id is None:
            return False
        grandparent = self._store.find_by_id(parent.parent_id)
        return grandparent is not None and grandparent.parent_id is not None

    def ancestors(self, issue_id: str) -> list[Issue]:
        """Return resolved ancestors of issue_id, nearest first.

        Stops quietly at a dangling reference, a revisited node, or the step cap.
        """
        issue = self._store.find_by_id(issue_id)
        if issue is None:
            raise IssueNotFoundError(f"Issue not found: {issue_id}")

        chain: list[Issue] = []
        seen = {issue.id}
        current = issue.parent_id
        while current is not None and current not in seen and len(chain) < self._max_steps:
            node = self._store.find_by_id(current)
            if node is None:
                break
            chain.append(node)
            seen.add(node.id)
            current = node.parent_id
        return chain
