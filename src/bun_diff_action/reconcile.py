"""Converge the set of tracking comments on a target to the set of changed lockb files.

One pass, no persisted state: every run recomputes the mapping from what the
platform currently reports. Creates and updates for all tracked files happen
before any delete.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

from bun_diff_action.actions import Action
from bun_diff_action.comments import MalformedMetadataError, metadata_for_comment
from bun_diff_action.models import ReconcileSummary, TrackedFile, TrackingComment
from bun_diff_action.observability import debug_event, log_event, output_group


LOGGER = logging.getLogger("bun_diff_action.reconcile")


def reconcile(action: Action, *, diff_stream: TextIO | None = None) -> ReconcileSummary:
    files = action.list_tracked_files()
    comments = action.list_tracking_comments()
    comment_paths = _decode_comment_paths(comments)

    created: list[str] = []
    updated: list[str] = []
    unchanged: list[str] = []
    matched_ids: set[int] = set()

    for file in files:
        diff = action.get_diff(file)
        _print_diff(file, diff, stream=diff_stream)

        match = _find_comment(file, comments, comment_paths, exclude=matched_ids)
        if match is not None:
            matched_ids.add(match.comment_id)
            debug_event(
                LOGGER,
                "tracking_comment_matched",
                filename=file.filename,
                comment_id=match.comment_id,
            )
            if action.update_comment(comment=match, diff=diff, filename=file.filename):
                log_event(
                    LOGGER,
                    "tracking_comment_updated",
                    filename=file.filename,
                    comment_id=match.comment_id,
                )
                updated.append(file.filename)
            else:
                unchanged.append(file.filename)
        else:
            action.create_comment(diff=diff, filename=file.filename)
            log_event(LOGGER, "tracking_comment_created", filename=file.filename)
            created.append(file.filename)

    tracked_filenames = {file.filename for file in files}
    deleted: list[int] = []
    skipped: list[int] = []
    for comment in comments:
        path = comment_paths.get(comment.comment_id)
        if path is None:
            skipped.append(comment.comment_id)
            continue
        if path in tracked_filenames and comment.comment_id in matched_ids:
            continue
        action.delete_comment(comment)
        log_event(
            LOGGER,
            "tracking_comment_deleted",
            comment_id=comment.comment_id,
            path=path,
            reason="duplicate" if path in tracked_filenames else "stale",
        )
        deleted.append(comment.comment_id)

    summary = ReconcileSummary(
        created=tuple(created),
        updated=tuple(updated),
        unchanged=tuple(unchanged),
        deleted=tuple(deleted),
        skipped=tuple(skipped),
    )
    log_event(
        LOGGER,
        "reconcile_finished",
        tracked_count=len(files),
        comment_count=len(comments),
        created_count=len(summary.created),
        updated_count=len(summary.updated),
        unchanged_count=len(summary.unchanged),
        deleted_count=len(summary.deleted),
        skipped_count=len(summary.skipped),
    )
    return summary


def _decode_comment_paths(comments: list[TrackingComment]) -> dict[int, str]:
    paths: dict[int, str] = {}
    for comment in comments:
        try:
            paths[comment.comment_id] = metadata_for_comment(comment).path
        except MalformedMetadataError as exc:
            LOGGER.warning(
                "event=tracking_comment_malformed comment_id=%s error=%s",
                comment.comment_id,
                exc,
            )
    return paths


def _find_comment(
    file: TrackedFile,
    comments: list[TrackingComment],
    comment_paths: dict[int, str],
    *,
    exclude: set[int],
) -> TrackingComment | None:
    for comment in comments:
        if comment.comment_id in exclude:
            continue
        if comment_paths.get(comment.comment_id) == file.filename:
            return comment
    return None


def _print_diff(file: TrackedFile, diff: str, *, stream: TextIO | None) -> None:
    out = stream if stream is not None else sys.stdout
    with output_group(f"Diff for {file.filename}", stream=out):
        out.write(diff if diff.endswith("\n") or not diff else f"{diff}\n")
