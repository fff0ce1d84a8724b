from __future__ import annotations

from abc import ABC, abstractmethod
import logging

from bun_diff_action.comments import (
    is_lockb_file,
    is_tracking_comment,
    metadata_for_comment,
    render_diff_comment,
)
from bun_diff_action.config import MissingContextError, UnsupportedEventError
from bun_diff_action.git_ops import GitRepoManager
from bun_diff_action.github_gateway import GitHubGateway
from bun_diff_action.models import (
    ChangedFile,
    EventContext,
    Metadata,
    PlatformComment,
    PullRequestContext,
    TrackedFile,
    TrackingComment,
)
from bun_diff_action.observability import debug_event


LOGGER = logging.getLogger("bun_diff_action.actions")


class Action(ABC):
    """Comment and diff operations scoped to one pull request or one commit."""

    @abstractmethod
    def list_tracked_files(self) -> list[TrackedFile]:
        """Return the changed bun.lockb files in platform order."""

    @abstractmethod
    def list_tracking_comments(self) -> list[TrackingComment]:
        """Return the comments on the target that carry a bun-diff-action marker."""

    @abstractmethod
    def create_comment(self, *, diff: str, filename: str) -> None:
        """Post a new tracking comment for filename."""

    @abstractmethod
    def update_comment(self, *, comment: TrackingComment, diff: str, filename: str) -> bool:
        """Rewrite an existing tracking comment; return False when the body is already current."""

    @abstractmethod
    def delete_comment(self, comment: TrackingComment) -> None:
        """Remove a tracking comment from the target."""

    @abstractmethod
    def get_diff(self, file: TrackedFile) -> str:
        """Return the textual lockfile diff for file."""


class PullRequestAction(Action):
    def __init__(
        self, *, github: GitHubGateway, git: GitRepoManager, pull_request: PullRequestContext
    ) -> None:
        self.github = github
        self.git = git
        self.pull_request = pull_request

    def list_tracked_files(self) -> list[TrackedFile]:
        return _tracked_files(self.github.list_pull_request_files(self.pull_request.number))

    def list_tracking_comments(self) -> list[TrackingComment]:
        return _tracking_comments(
            self.github.list_pull_request_review_comments(self.pull_request.number)
        )

    def create_comment(self, *, diff: str, filename: str) -> None:
        self.github.create_review_comment(
            pr_number=self.pull_request.number,
            path=filename,
            body=render_diff_comment(diff=diff, metadata=Metadata(path=filename)),
            commit_id=self.pull_request.head_sha,
        )

    def update_comment(self, *, comment: TrackingComment, diff: str, filename: str) -> bool:
        body = render_diff_comment(diff=diff, metadata=Metadata(path=filename))
        if _same_body(comment.body, body):
            return False
        self.github.update_review_comment(comment.comment_id, body)
        return True

    def delete_comment(self, comment: TrackingComment) -> None:
        self.github.delete_review_comment(comment.comment_id)

    def get_diff(self, file: TrackedFile) -> str:
        base_ref = self.pull_request.base_ref
        self.git.fetch(base_ref)
        return self.git.diff(self.git.remote_ref(base_ref), "HEAD", file.diff_paths)


class CommitAction(Action):
    def __init__(self, *, github: GitHubGateway, git: GitRepoManager, sha: str) -> None:
        self.github = github
        self.git = git
        self.sha = sha

    def list_tracked_files(self) -> list[TrackedFile]:
        return _tracked_files(self.github.list_commit_files(self.sha))

    def list_tracking_comments(self) -> list[TrackingComment]:
        return _tracking_comments(self.github.list_commit_comments(self.sha))

    def create_comment(self, *, diff: str, filename: str) -> None:
        self.github.create_commit_comment(
            sha=self.sha,
            body=render_diff_comment(
                header=_commit_header(filename),
                diff=diff,
                metadata=Metadata(path=filename),
            ),
        )

    def update_comment(self, *, comment: TrackingComment, diff: str, filename: str) -> bool:
        metadata = metadata_for_comment(comment).with_path(filename)
        body = render_diff_comment(header=_commit_header(filename), diff=diff, metadata=metadata)
        if _same_body(comment.body, body):
            return False
        self.github.update_commit_comment(comment.comment_id, body)
        return True

    def delete_comment(self, comment: TrackingComment) -> None:
        self.github.delete_commit_comment(comment.comment_id)

    def get_diff(self, file: TrackedFile) -> str:
        self.git.fetch(self.sha, depth=2)
        return self.git.diff(f"{self.sha}^", self.sha, file.diff_paths)


def build_action(event: EventContext, *, github: GitHubGateway, git: GitRepoManager) -> Action:
    if event.kind == "pull_request":
        if event.pull_request is None:
            raise MissingContextError(f"Event {event.event_name!r} has no pull request context")
        return PullRequestAction(github=github, git=git, pull_request=event.pull_request)
    if event.kind == "commit":
        if event.commit is None:
            raise MissingContextError(f"Event {event.event_name!r} has no commit context")
        return CommitAction(github=github, git=git, sha=event.commit.sha)
    raise UnsupportedEventError(f"Unsupported event: {event.event_name}")


def _commit_header(filename: str) -> str:
    return f"`{filename}`"


def _same_body(current: str, rendered: str) -> bool:
    # GitHub may hand back CRLF line endings for bodies edited in the web UI.
    return current.replace("\r\n", "\n").strip() == rendered.strip()


def _tracked_files(files: list[ChangedFile]) -> list[TrackedFile]:
    tracked = [
        TrackedFile(filename=file.filename, previous_filename=file.previous_filename)
        for file in files
        if is_lockb_file(file.filename)
    ]
    debug_event(
        LOGGER,
        "tracked_files_listed",
        changed_count=len(files),
        tracked=tuple(file.filename for file in tracked),
    )
    return tracked


def _tracking_comments(
    comments: list[PlatformComment],
) -> list[TrackingComment]:
    tracking = [
        TrackingComment(comment_id=comment.comment_id, body=comment.body, path=comment.path)
        for comment in comments
        if is_tracking_comment(comment.body)
    ]
    debug_event(
        LOGGER,
        "tracking_comments_listed",
        comment_count=len(comments),
        tracking_ids=tuple(comment.comment_id for comment in tracking),
    )
    return tracking
