from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal


EventKind = Literal["pull_request", "commit"]


@dataclass(frozen=True)
class ChangedFile:
    filename: str
    previous_filename: str | None
    status: str


@dataclass(frozen=True)
class TrackedFile:
    filename: str
    previous_filename: str | None = None

    @property
    def diff_paths(self) -> tuple[str, ...]:
        if self.previous_filename and self.previous_filename != self.filename:
            return (self.filename, self.previous_filename)
        return (self.filename,)


@dataclass(frozen=True)
class TrackingComment:
    comment_id: int
    body: str
    path: str | None


@dataclass(frozen=True)
class Metadata:
    path: str
    extra: dict[str, object] = field(default_factory=dict)

    def with_path(self, path: str) -> Metadata:
        return Metadata(path=path, extra=dict(self.extra))

    def to_json_object(self) -> dict[str, object]:
        payload: dict[str, object] = {"path": self.path}
        for key, value in self.extra.items():
            if key != "path":
                payload[key] = value
        return payload


@dataclass(frozen=True)
class PlatformComment:
    """A review or commit comment as the platform reports it."""

    comment_id: int
    body: str
    path: str | None


@dataclass(frozen=True)
class PullRequestContext:
    number: int
    base_ref: str
    head_sha: str


@dataclass(frozen=True)
class CommitContext:
    sha: str


@dataclass(frozen=True)
class EventContext:
    kind: EventKind
    event_name: str
    pull_request: PullRequestContext | None = None
    commit: CommitContext | None = None


@dataclass(frozen=True)
class ReconcileSummary:
    created: tuple[str, ...] = ()
    updated: tuple[str, ...] = ()
    unchanged: tuple[str, ...] = ()
    deleted: tuple[int, ...] = ()
    skipped: tuple[int, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.deleted)
