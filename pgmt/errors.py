"""Exception taxonomy for the hierarchy engine and the issue service."""


class PgmtError(Exception):
    """Base for every error the engine reports to callers."""


class HierarchyError(PgmtError):
    """A proposed parent/child relationship breaks a hierarchy rule.

    Always a caller input problem; never retried automatically.
    """


class CycleError(HierarchyError):
    """Linking two issues would close a loop in the parent chain."""


class AllocationError(PgmtError):
    """No unused key could be produced within the retry budget.

    Transient; the whole operation may be retried.
    """


class NotFoundError(PgmtError):
    """A referenced identifier does not resolve."""


class IssueNotFoundError(NotFoundError):
    pass


class ProjectNotFoundError(NotFoundError):
    pass


class DuplicateKeyError(PgmtError):
    pass


class SprintNotFoundError(NotFoundError):
    pass


class ProjectNotEmptyError(PgmtError):
    """A project still holds issues and the caller did not ask for a cascade."""


class ConfigError(PgmtError):
    """The workspace configuration file cannot satisfy a request."""
