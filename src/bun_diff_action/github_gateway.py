from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
from typing import cast
from urllib.parse import urlencode

from bun_diff_action.models import ChangedFile, PlatformComment
from bun_diff_action.observability import debug_event, log_event
from bun_diff_action.shell import CommandError, run


LOGGER = logging.getLogger("bun_diff_action.github_gateway")
_PAGE_SIZE = 100


class GitHubRequestError(RuntimeError):
    """A GitHub API call failed; the run cannot continue."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class GitHubGateway:
    owner: str
    name: str
    token: str | None = field(default=None, repr=False, compare=False)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def list_pull_request_files(self, pr_number: int) -> list[ChangedFile]:
        files: list[ChangedFile] = []
        page = 1
        while True:
            query = urlencode({"per_page": _PAGE_SIZE, "page": page})
            path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/files?{query}"
            payload = self._api_json("GET", path)
            if not isinstance(payload, list):
                raise GitHubRequestError(
                    "Unexpected GitHub response: expected list of pull request files"
                )
            files.extend(_parse_changed_files(payload))
            if len(payload) < _PAGE_SIZE:
                break
            page += 1
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request_files",
            pr_number=pr_number,
            count=len(files),
        )
        return files

    def list_commit_files(self, sha: str) -> list[ChangedFile]:
        files: list[ChangedFile] = []
        page = 1
        while True:
            query = urlencode({"per_page": _PAGE_SIZE, "page": page})
            path = f"/repos/{self.owner}/{self.name}/commits/{sha}?{query}"
            payload_obj = _as_object_dict(self._api_json("GET", path))
            if payload_obj is None:
                raise GitHubRequestError("Unexpected GitHub response: expected object for commit")
            files_payload = payload_obj.get("files")
            if files_payload is None:
                break
            if not isinstance(files_payload, list):
                raise GitHubRequestError(
                    "Unexpected GitHub response: expected list of commit files"
                )
            files.extend(_parse_changed_files(files_payload))
            if len(files_payload) < _PAGE_SIZE:
                break
            page += 1
        log_event(
            LOGGER,
            "github_read",
            endpoint="commit_files",
            sha=sha,
            count=len(files),
        )
        return files

    def list_pull_request_review_comments(self, pr_number: int) -> list[PlatformComment]:
        comments: list[PlatformComment] = []
        page = 1
        while True:
            query = urlencode({"per_page": _PAGE_SIZE, "page": page})
            path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/comments?{query}"
            payload = self._api_json("GET", path)
            if not isinstance(payload, list):
                raise GitHubRequestError(
                    "Unexpected GitHub response: expected list of review comments"
                )
            for item in payload:
                item_obj = _as_object_dict(item)
                if item_obj is None:
                    continue
                comments.append(_parse_comment(item_obj))
            if len(payload) < _PAGE_SIZE:
                break
            page += 1
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request_review_comments",
            pr_number=pr_number,
            count=len(comments),
        )
        return comments

    def create_review_comment(
        self, *, pr_number: int, path: str, body: str, commit_id: str
    ) -> PlatformComment:
        api_path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/comments"
        payload_obj = _as_object_dict(
            self._api_json(
                "POST",
                api_path,
                payload={
                    "body": body,
                    "path": path,
                    "commit_id": commit_id,
                    "subject_type": "file",
                },
            )
        )
        if payload_obj is None:
            raise GitHubRequestError("Unexpected GitHub response: expected object for comment")
        comment = _parse_comment(payload_obj)
        log_event(
            LOGGER,
            "github_write",
            endpoint="pull_request_review_comment_create",
            pr_number=pr_number,
            comment_id=comment.comment_id,
        )
        return comment

    def update_review_comment(self, comment_id: int, body: str) -> None:
        path = f"/repos/{self.owner}/{self.name}/pulls/comments/{comment_id}"
        self._api_json("PATCH", path, payload={"body": body})
        log_event(
            LOGGER,
            "github_write",
            endpoint="pull_request_review_comment_update",
            comment_id=comment_id,
        )

    def delete_review_comment(self, comment_id: int) -> None:
        path = f"/repos/{self.owner}/{self.name}/pulls/comments/{comment_id}"
        self._api_json("DELETE", path)
        log_event(
            LOGGER,
            "github_write",
            endpoint="pull_request_review_comment_delete",
            comment_id=comment_id,
        )

    def list_commit_comments(self, sha: str) -> list[PlatformComment]:
        comments: list[PlatformComment] = []
        page = 1
        while True:
            query = urlencode({"per_page": _PAGE_SIZE, "page": page})
            path = f"/repos/{self.owner}/{self.name}/commits/{sha}/comments?{query}"
            payload = self._api_json("GET", path)
            if not isinstance(payload, list):
                raise GitHubRequestError(
                    "Unexpected GitHub response: expected list of commit comments"
                )
            for item in payload:
                item_obj = _as_object_dict(item)
                if item_obj is None:
                    continue
                comments.append(_parse_comment(item_obj))
            if len(payload) < _PAGE_SIZE:
                break
            page += 1
        log_event(
            LOGGER,
            "github_read",
            endpoint="commit_comments",
            sha=sha,
            count=len(comments),
        )
        return comments

    def create_commit_comment(self, *, sha: str, body: str) -> PlatformComment:
        path = f"/repos/{self.owner}/{self.name}/commits/{sha}/comments"
        payload_obj = _as_object_dict(self._api_json("POST", path, payload={"body": body}))
        if payload_obj is None:
            raise GitHubRequestError("Unexpected GitHub response: expected object for comment")
        comment = _parse_comment(payload_obj)
        log_event(
            LOGGER,
            "github_write",
            endpoint="commit_comment_create",
            sha=sha,
            comment_id=comment.comment_id,
        )
        return comment

    def update_commit_comment(self, comment_id: int, body: str) -> None:
        path = f"/repos/{self.owner}/{self.name}/comments/{comment_id}"
        self._api_json("PATCH", path, payload={"body": body})
        log_event(
            LOGGER,
            "github_write",
            endpoint="commit_comment_update",
            comment_id=comment_id,
        )

    def delete_commit_comment(self, comment_id: int) -> None:
        path = f"/repos/{self.owner}/{self.name}/comments/{comment_id}"
        self._api_json("DELETE", path)
        log_event(
            LOGGER,
            "github_write",
            endpoint="commit_comment_delete",
            comment_id=comment_id,
        )

    def get_latest_release_tag(self, owner: str, repo: str) -> str:
        path = f"/repos/{owner}/{repo}/releases/latest"
        payload_obj = _as_object_dict(self._api_json("GET", path))
        if payload_obj is None:
            raise GitHubRequestError("Unexpected GitHub response: expected object for release")
        tag_name = _as_string(payload_obj.get("tag_name"))
        if not tag_name:
            raise GitHubRequestError("Unexpected GitHub response: release is missing tag_name")
        log_event(
            LOGGER,
            "github_read",
            endpoint="latest_release",
            repo_full_name=f"{owner}/{repo}",
            tag_name=tag_name,
        )
        return tag_name

    def download_release_asset(
        self, *, owner: str, repo: str, tag: str, asset_name: str, dest_dir: Path
    ) -> Path:
        dest_dir.mkdir(parents=True, exist_ok=True)
        run(
            [
                "gh",
                "release",
                "download",
                tag,
                "--repo",
                f"{owner}/{repo}",
                "--pattern",
                asset_name,
                "--dir",
                str(dest_dir),
                "--clobber",
            ],
            env=self._gh_env(),
        )
        asset_path = dest_dir / asset_name
        log_event(
            LOGGER,
            "github_release_asset_downloaded",
            repo_full_name=f"{owner}/{repo}",
            tag=tag,
            asset=asset_name,
        )
        return asset_path

    def _gh_env(self) -> dict[str, str] | None:
        if self.token:
            return {"GH_TOKEN": self.token}
        return None

    def _api_json(self, method: str, path: str, payload: dict[str, object] | None = None) -> object:
        method_upper = method.upper()
        cmd = ["gh", "api", "--method", method_upper, "--include", path]
        stdin_payload: str | None = None
        if payload is not None:
            cmd.extend(["--input", "-"])
            stdin_payload = json.dumps(payload)

        try:
            raw = run(cmd, input_text=stdin_payload, env=self._gh_env(), check=False)
        except CommandError as exc:
            detail = exc.stderr.strip() or str(exc)
            log_event(
                LOGGER,
                "github_request_failed",
                method=method_upper,
                path=path,
                error_type=type(exc).__name__,
                raw_preview=_preview_for_log(detail),
            )
            raise GitHubRequestError(f"GitHub {method_upper} {path} failed: {detail}") from exc
        try:
            status_code, _headers, body = _parse_http_response(raw)
        except RuntimeError as exc:
            log_event(
                LOGGER,
                "github_request_failed",
                method=method_upper,
                path=path,
                error_type=type(exc).__name__,
                raw_preview=_preview_for_log(raw),
            )
            raise GitHubRequestError(
                f"GitHub {method_upper} {path} failed: {exc}"
            ) from exc

        if status_code < 200 or status_code >= 300:
            message = body.strip() or "<empty>"
            log_event(
                LOGGER,
                "github_request_failed",
                method=method_upper,
                path=path,
                status_code=status_code,
                raw_preview=_preview_for_log(body),
            )
            raise GitHubRequestError(
                f"GitHub {method_upper} {path} failed with status {status_code}: {message}",
                status_code=status_code,
            )

        debug_event(
            LOGGER, "github_request", method=method_upper, path=path, status_code=status_code
        )
        if not body.strip():
            return None
        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            raise GitHubRequestError(
                f"GitHub {method_upper} {path} returned invalid JSON: {exc}",
                status_code=status_code,
            ) from exc


def _parse_changed_files(payload: list[object]) -> list[ChangedFile]:
    files: list[ChangedFile] = []
    for item in payload:
        item_obj = _as_object_dict(item)
        if item_obj is None:
            continue
        filename = item_obj.get("filename")
        if not isinstance(filename, str) or not filename:
            continue
        files.append(
            ChangedFile(
                filename=filename,
                previous_filename=_as_optional_str(item_obj.get("previous_filename")),
                status=_as_string(item_obj.get("status")),
            )
        )
    return files


def _parse_comment(item_obj: dict[str, object]) -> PlatformComment:
    return PlatformComment(
        comment_id=_as_int(item_obj.get("id"), field="id"),
        body=_as_string(item_obj.get("body")),
        path=_as_optional_str(item_obj.get("path")),
    )


def _parse_http_response(raw: str) -> tuple[int, dict[str, str], str]:
    normalized = raw.replace("\r\n", "\n")
    lines = normalized.split("\n")

    status_line_index = -1
    for index, line in enumerate(lines):
        if line.startswith("HTTP/"):
            status_line_index = index

    if status_line_index < 0:
        raise RuntimeError("Unexpected GitHub response: missing HTTP status line")

    status_line = lines[status_line_index]
    status_parts = status_line.split(" ", 2)
    if len(status_parts) < 2:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}")

    try:
        status_code = int(status_parts[1])
    except ValueError as exc:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}") from exc

    headers: dict[str, str] = {}
    body_start = len(lines)
    for index in range(status_line_index + 1, len(lines)):
        line = lines[index]
        if line == "":
            body_start = index + 1
            break
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()

    body = "\n".join(lines[body_start:])
    return status_code, headers, body


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_optional_str(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise GitHubRequestError(f"Unexpected GitHub response type for {field}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise GitHubRequestError(
                f"Unexpected GitHub response value for {field}: {value}"
            ) from exc
    raise GitHubRequestError(f"Unexpected GitHub response type for {field}")
