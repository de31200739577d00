"""GitHub push-event payload and sync response schemas."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CommitAuthor(_Payload):
    name: str | None = None
    email: str | None = None


class PushCommit(_Payload):
    """One commit of a push with the paths it touched."""

    id: str
    message: str = ""
    timestamp: str | None = None
    author: CommitAuthor | None = None
    added: list[str] = Field(default_factory=list)
    modified: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)


class RepositoryOwner(_Payload):
    name: str | None = None
    login: str | None = None


class Repository(_Payload):
    name: str
    full_name: str
    owner: RepositoryOwner | None = None


class PushEvent(_Payload):
    """Subset of GitHub's ``push`` webhook payload used by the sync engine."""

    ref: str
    before: str = ""
    after: str = ""
    repository: Repository | None = None
    head_commit: PushCommit | None = None
    commits: list[PushCommit] = Field(default_factory=list)

    @property
    def commit_sha(self) -> str:
        """Commit the push ended on; files are fetched at exactly this ref."""
        if self.head_commit is not None:
            return self.head_commit.id
        return self.after

    @property
    def branch(self) -> str | None:
        prefix = "refs/heads/"
        return self.ref.removeprefix(prefix) if self.ref.startswith(prefix) else None


class SyncErrorItem(BaseModel):
    """A file that failed to sync and why."""

    file: str
    error: str


class SyncResult(BaseModel):
    """Aggregate outcome of one webhook delivery or manual sync run."""

    success: bool
    processed: int
    errors: list[SyncErrorItem] = Field(default_factory=list)
    duration: int = Field(description="Wall-clock milliseconds spent syncing")
    message: str | None = None

    @property
    def partial(self) -> bool:
        """Some files failed while others were processed."""
        return bool(self.errors) and self.processed > 0
