"""Single-file JSON store, the default backing for the CLI.

Every call takes an exclusive ``flock`` on a sidecar lock file and re-reads the
document before touching it, so several pgmt processes can share one file.
Mutations rewrite the whole document atomically. Key sequences are persisted
alongside the issues, so a number is never handed out twice, even after the
issue that used it has been deleted.
"""

import fcntl
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO

from pydantic import BaseModel

from pgmt.hierarchy.keys import KeySequence
from pgmt.models import Issue, Project, Sprint
from pgmt.stores.base import IssueStore

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


class StoreDocument(BaseModel):
    version: int = FORMAT_VERSION
    projects: dict[str, Project] = {}
    sprints: dict[str, Sprint] = {}
    issues: dict[str, Issue] = {}
    sequences: dict[str, int] = {}  # project_id -> last number handed out


def _key_number(key: str) -> int:
    _, _, suffix = key.rpartition("-")
    return int(suffix) if suffix.isdigit() else 0


class JsonFileStore(IssueStore, KeySequence):
    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock_path = path.with_name(f".{path.name}.lock")
        self._lock = threading.RLock()
        self._depth = 0
        self._lock_fd: IO[str] | None = None
        self._doc = StoreDocument()
        with self._locked():
            pass

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> StoreDocument:
        if not self._path.exists():
            return StoreDocument()
        doc = StoreDocument.model_validate_json(self._path.read_text(encoding="utf-8"))
        if doc.version != FORMAT_VERSION:
            raise RuntimeError(f"Unsupported store format version {doc.version} in {self._path}")
        logger.debug("Loaded %d issues from %s", len(doc.issues), self._path)
        return doc

    @contextmanager
    def _locked(self) -> Iterator[StoreDocument]:
        """Hold the file lock; the outermost entry re-reads the document from disk."""
        with self._lock:
            if self._depth == 0:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                self._lock_fd = self._lock_path.open("w")
                fcntl.flock(self._lock_fd, fcntl.LOCK_EX)
                try:
                    self._doc = self._load()
                except BaseException:
                    self._release()
                    raise
            self._depth += 1
            try:
                yield self._doc
            finally:
                self._depth -= 1
                if self._depth == 0:
                    self._release()

    def _release(self) -> None:
        if self._lock_fd is not None:
            fcntl.flock(self._lock_fd, fcntl.LOCK_UN)
            self._lock_fd.close()
            self._lock_fd = None

    def _flush(self) -> None:
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(self._doc.model_dump_json(indent=2))
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._locked():
            yield

    # -- issues --------------------------------------------------------------

    def _issues_where(self, **fields: object) -> list[Issue]:
        with self._locked() as doc:
            return [i for i in doc.issues.values() if all(getattr(i, k) == v for k, v in fields.items())]

    def find_by_id(self, issue_id: str) -> Issue | None:
        with self._locked() as doc:
            return doc.issues.get(issue_id)

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
        with self._locked() as doc:
            doc.issues[issue.id] = issue
            self._flush()
        return issue

    def delete(self, issue_id: str) -> None:
        with self._locked() as doc:
            if doc.issues.pop(issue_id, None) is not None:
                self._flush()

    # -- projects ------------------------------------------------------------

    def save_project(self, project: Project) -> Project:
        with self._locked() as doc:
            doc.projects[project.id] = project
            self._flush()
        return project

    def find_project_by_key(self, key: str) -> Project | None:
        with self._locked() as doc:
            return next((p for p in doc.projects.values() if p.key == key), None)

    def find_project_by_id(self, project_id: str) -> Project | None:
        with self._locked() as doc:
            return doc.projects.get(project_id)

    def list_projects(self) -> list[Project]:
        with self._locked() as doc:
            return list(doc.projects.values())

    def delete_project(self, project_id: str) -> None:
        with self._locked() as doc:
            if doc.projects.pop(project_id, None) is not None:
                self._flush()

    # -- sprints -------------------------------------------------------------

    def save_sprint(self, sprint: Sprint) -> Sprint:
        with self._locked() as doc:
            doc.sprints[sprint.id] = sprint
            self._flush()
        return sprint

    def find_sprint_by_id(self, sprint_id: str) -> Sprint | None:
        with self._locked() as doc:
            return doc.sprints.get(sprint_id)

    def find_sprint_by_name(self, project_id: str, name: str) -> Sprint | None:
        with self._locked() as doc:
            return next((s for s in doc.sprints.values() if s.project_id == project_id and s.name == name), None)

    def list_sprints(self, project_id: str) -> list[Sprint]:
        with self._locked() as doc:
            return [s for s in doc.sprints.values() if s.project_id == project_id]

    def delete_sprint(self, sprint_id: str) -> None:
        with self._locked() as doc:
            if doc.sprints.pop(sprint_id, None) is not None:
                self._flush()

    # -- key sequence --------------------------------------------------------

    def next_value(self, project_id: str) -> int:
        with self._locked() as doc:
            last = doc.sequences.get(project_id)
            if last is None:
                # First allocation for a project written by an older tool: continue past its keys.
                last = max((_key_number(i.key) for i in doc.issues.values() if i.project_id == project_id), default=0)
            doc.sequences[project_id] = last + 1
            self._flush()
            return last + 1
