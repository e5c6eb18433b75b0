"""Type constraint table: which issue types may contain which."""

import logging

from pgmt.errors import HierarchyError
from pgmt.models import IssueType

logger = logging.getLogger(__name__)

_CHILDREN: dict[IssueType, frozenset[IssueType]] = {
    IssueType.EPIC: frozenset({IssueType.STORY, IssueType.TASK, IssueType.BUG}),
    IssueType.STORY: frozenset({IssueType.SUBTASK}),
    IssueType.TASK: frozenset({IssueType.SUBTASK}),
    IssueType.BUG: frozenset({IssueType.SUBTASK}),
    IssueType.SUBTASK: frozenset(),
}

# Types that may never be nested under anything, whatever the forward table says.
_ROOT_ONLY = frozenset({IssueType.EPIC})

_CONTAINER_RULE = {
    IssueType.EPIC: "Epic can only contain Stories, Tasks, or Bugs",
    IssueType.STORY: "Story can only contain Subtasks",
    IssueType.TASK: "Task can only contain Subtasks",
    IssueType.BUG: "Bug can only contain Subtasks",
    IssueType.SUBTASK: "Subtask cannot have children",
}


def _coerce(issue_type: IssueType) -> IssueType:
    # Raises ValueError for anything outside the enum; that is a programming error.
    return IssueType(issue_type)


def allowed_child_types(parent_type: IssueType) -> frozenset[IssueType]:
    return _CHILDREN[_coerce(parent_type)]


def can_have_parent(issue_type: IssueType) -> bool:
    return _coerce(issue_type) not in _ROOT_ONLY


def can_have_children(issue_type: IssueType) -> bool:
    return bool(allowed_child_types(issue_type))


def valid_parent_types_for(child_type: IssueType) -> frozenset[IssueType]:
    """Inverse lookup, derived from the forward table so both always agree.

    SUBTASK → {STORY, TASK, BUG}; STORY/TASK/BUG → {EPIC}; EPIC → {}.
    """
    child_type = _coerce(child_type)
    if child_type in _ROOT_ONLY:
        return frozenset()
    return frozenset(parent for parent, children in _CHILDREN.items() if child_type in children)


def check_container(parent_type: IssueType, child_type: IssueType) -> None:
    """Raise HierarchyError naming the broken rule if parent_type can't hold child_type."""
    logger.debug("Checking container rule: parent=%s child=%s", parent_type, child_type)
    if _coerce(child_type) not in allowed_child_types(parent_type):
        raise HierarchyError(_CONTAINER_RULE[_coerce(parent_type)])
