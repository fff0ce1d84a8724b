from __future__ import annotations

import json
from pathlib import Path
import subprocess
from urllib.parse import parse_qs, urlparse

import pytest

from bun_diff_action.github_gateway import (
    GitHubGateway,
    GitHubRequestError,
    _as_int,
    _as_object_dict,
    _parse_http_response,
    _preview_for_log,
)
from bun_diff_action.models import ChangedFile


ApiCall = tuple[str, str, dict[str, object] | None]


def _install_fake_api(
    monkeypatch: pytest.MonkeyPatch, responses: dict[str, object]
) -> list[ApiCall]:
    calls: list[ApiCall] = []

    def fake_api(
        self: GitHubGateway, method: str, path: str, payload: dict[str, object] | None = None
    ) -> object:
        _ = self
        calls.append((method, path, payload))
        for prefix, response in responses.items():
            if path.startswith(prefix):
                if callable(response):
                    return response(path)
                return response
        return None

    monkeypatch.setattr(GitHubGateway, "_api_json", fake_api)
    return calls


def test_list_pull_request_files_paginates_and_keeps_renames(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    gateway = GitHubGateway("o", "r")

    def page(path: str) -> object:
        params = parse_qs(urlparse(path).query)
        if params["page"] == ["1"]:
            return [{"filename": f"f{i}", "status": "modified"} for i in range(100)]
        return [
            {
                "filename": "new/bun.lockb",
                "previous_filename": "old/bun.lockb",
                "status": "renamed",
            },
            {"filename": ""},
            "junk",
        ]

    calls = _install_fake_api(monkeypatch, {"/repos/o/r/pulls/5/files": page})

    files = gateway.list_pull_request_files(5)

    assert len(calls) == 2
    assert len(files) == 101
    assert files[-1] == ChangedFile(
        filename="new/bun.lockb", previous_filename="old/bun.lockb", status="renamed"
    )
    assert files[0].previous_filename is None


def test_list_pull_request_files_rejects_non_list(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    _install_fake_api(monkeypatch, {"/repos/o/r/pulls/5/files": {"bad": "shape"}})

    with pytest.raises(GitHubRequestError, match="expected list of pull request files"):
        gateway.list_pull_request_files(5)


def test_list_commit_files_reads_files_from_commit(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    calls = _install_fake_api(
        monkeypatch,
        {
            "/repos/o/r/commits/abc?": {
                "sha": "abc",
                "files": [
                    {"filename": "bun.lockb", "status": "modified"},
                    {"filename": "package.json", "status": "modified"},
                ],
            }
        },
    )

    files = gateway.list_commit_files("abc")

    assert [file.filename for file in files] == ["bun.lockb", "package.json"]
    assert calls[0][0] == "GET"


def test_list_commit_files_without_files_key(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    _install_fake_api(monkeypatch, {"/repos/o/r/commits/abc?": {"sha": "abc"}})
    assert gateway.list_commit_files("abc") == []


def test_review_comment_crud(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    calls = _install_fake_api(
        monkeypatch,
        {
            "/repos/o/r/pulls/7/comments?": [
                {"id": 11, "body": "hello", "path": "bun.lockb", "html_url": "u11"},
                {"id": "12", "body": None, "path": None},
            ],
            "/repos/o/r/pulls/7/comments": {
                "id": 13,
                "body": "new",
                "path": "bun.lockb",
                "html_url": "u13",
            },
        },
    )

    comments = gateway.list_pull_request_review_comments(7)
    created = gateway.create_review_comment(
        pr_number=7, path="bun.lockb", body="new", commit_id="headsha"
    )
    gateway.update_review_comment(13, "updated")
    gateway.delete_review_comment(13)

    assert [comment.comment_id for comment in comments] == [11, 12]
    assert comments[1].body == ""
    assert comments[1].path is None
    assert created.comment_id == 13
    assert calls[1] == (
        "POST",
        "/repos/o/r/pulls/7/comments",
        {"body": "new", "path": "bun.lockb", "commit_id": "headsha", "subject_type": "file"},
    )
    assert calls[2] == ("PATCH", "/repos/o/r/pulls/comments/13", {"body": "updated"})
    assert calls[3] == ("DELETE", "/repos/o/r/pulls/comments/13", None)


def test_commit_comment_crud(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    calls = _install_fake_api(
        monkeypatch,
        {
            "/repos/o/r/commits/abc/comments?": [{"id": 21, "body": "b", "path": None}],
            "/repos/o/r/commits/abc/comments": {"id": 22, "body": "new"},
        },
    )

    comments = gateway.list_commit_comments("abc")
    created = gateway.create_commit_comment(sha="abc", body="new")
    gateway.update_commit_comment(22, "updated")
    gateway.delete_commit_comment(22)

    assert comments[0].comment_id == 21
    assert created.comment_id == 22
    assert calls[1] == ("POST", "/repos/o/r/commits/abc/comments", {"body": "new"})
    assert calls[2] == ("PATCH", "/repos/o/r/comments/22", {"body": "updated"})
    assert calls[3] == ("DELETE", "/repos/o/r/comments/22", None)


def test_get_latest_release_tag(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    _install_fake_api(
        monkeypatch, {"/repos/oven-sh/bun/releases/latest": {"tag_name": "bun-v1.1.8"}}
    )
    assert gateway.get_latest_release_tag("oven-sh", "bun") == "bun-v1.1.8"


def test_get_latest_release_tag_requires_tag(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    _install_fake_api(monkeypatch, {"/repos/oven-sh/bun/releases/latest": {}})
    with pytest.raises(GitHubRequestError, match="missing tag_name"):
        gateway.get_latest_release_tag("oven-sh", "bun")


def test_download_release_asset_uses_gh_release(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    gateway = GitHubGateway("o", "r", token="tok")
    calls: list[tuple[list[str], dict[str, object]]] = []

    def fake_run(argv: list[str], **kwargs: object) -> str:
        calls.append((argv, kwargs))
        return ""

    monkeypatch.setattr("bun_diff_action.github_gateway.run", fake_run)

    asset = gateway.download_release_asset(
        owner="oven-sh",
        repo="bun",
        tag="bun-v1.1.8",
        asset_name="bun-linux-x64.zip",
        dest_dir=tmp_path / "dl",
    )

    assert asset == tmp_path / "dl" / "bun-linux-x64.zip"
    argv, kwargs = calls[0]
    assert argv[:4] == ["gh", "release", "download", "bun-v1.1.8"]
    assert "--pattern" in argv and "bun-linux-x64.zip" in argv
    assert kwargs["env"] == {"GH_TOKEN": "tok"}


def test_api_json_get_parses_body_and_passes_token(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r", token="tok")
    seen: dict[str, object] = {}

    def fake_run(argv: list[str], **kwargs: object) -> str:
        seen["argv"] = argv
        seen.update(kwargs)
        return 'HTTP/2.0 200 OK\r\nContent-Type: application/json\r\n\r\n[{"id": 1}]'

    monkeypatch.setattr("bun_diff_action.github_gateway.run", fake_run)

    assert gateway._api_json("GET", "/repos/o/r/pulls/1/files") == [{"id": 1}]
    assert seen["argv"] == [
        "gh",
        "api",
        "--method",
        "GET",
        "--include",
        "/repos/o/r/pulls/1/files",
    ]
    assert seen["env"] == {"GH_TOKEN": "tok"}
    assert seen["check"] is False
    assert seen["input_text"] is None


def test_api_json_sends_payload_on_stdin(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    seen: dict[str, object] = {}

    def fake_run(argv: list[str], **kwargs: object) -> str:
        seen["argv"] = argv
        seen.update(kwargs)
        return 'HTTP/2.0 201 Created\n\n{"id": 5}'

    monkeypatch.setattr("bun_diff_action.github_gateway.run", fake_run)

    assert gateway._api_json("post", "/x", payload={"body": "hi"}) == {"id": 5}
    argv = seen["argv"]
    assert isinstance(argv, list)
    assert argv[-2:] == ["--input", "-"]
    assert json.loads(str(seen["input_text"])) == {"body": "hi"}
    assert seen["env"] is None


def test_api_json_delete_with_empty_body_returns_none(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    monkeypatch.setattr(
        "bun_diff_action.github_gateway.run", lambda argv, **kwargs: "HTTP/2.0 204 No Content\n\n"
    )
    assert gateway._api_json("DELETE", "/repos/o/r/comments/1") is None


def test_api_json_raises_on_error_status(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    monkeypatch.setattr(
        "bun_diff_action.github_gateway.run",
        lambda argv, **kwargs: 'HTTP/2.0 404 Not Found\n\n{"message": "Not Found"}',
    )
    with pytest.raises(GitHubRequestError, match="status 404") as excinfo:
        gateway._api_json("GET", "/repos/o/r/pulls/1/files")
    assert excinfo.value.status_code == 404


def test_api_json_raises_when_response_has_no_status(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    monkeypatch.setattr(
        "bun_diff_action.github_gateway.run",
        lambda argv, **kwargs: "gh: To use GitHub CLI in a GitHub Actions workflow, set GH_TOKEN",
    )
    with pytest.raises(GitHubRequestError, match="missing HTTP status line"):
        gateway._api_json("GET", "/repos/o/r/pulls/1/files")


def test_api_json_reports_gh_stderr_when_no_http_exchange(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    gateway = GitHubGateway("o", "r")
    stderr = (
        "gh: To use GitHub CLI in a GitHub Actions workflow, "
        "set the GH_TOKEN environment variable."
    )
    monkeypatch.setattr(
        subprocess,
        "run",
        lambda *args, **kwargs: subprocess.CompletedProcess(
            args=["gh"], returncode=4, stdout="", stderr=stderr
        ),
    )
    with pytest.raises(GitHubRequestError, match="GH_TOKEN") as excinfo:
        gateway.list_commit_comments("abc")
    assert "missing HTTP status line" not in str(excinfo.value)
    assert excinfo.value.status_code is None


def test_api_json_raises_on_invalid_json(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    monkeypatch.setattr(
        "bun_diff_action.github_gateway.run", lambda argv, **kwargs: "HTTP/2.0 200 OK\n\nnot-json"
    )
    with pytest.raises(GitHubRequestError, match="invalid JSON"):
        gateway._api_json("GET", "/x")


def test_parse_http_response_uses_last_status_line() -> None:
    raw = "HTTP/1.1 100 Continue\n\nHTTP/2.0 200 OK\nETag: abc\n\n{}"
    status, headers, body = _parse_http_response(raw)
    assert status == 200
    assert headers == {"etag": "abc"}
    assert body == "{}"


def test_parse_http_response_rejects_bad_status_line() -> None:
    with pytest.raises(RuntimeError, match="status line"):
        _parse_http_response("HTTP/2.0 abc\n\n")


def test_helpers() -> None:
    assert _as_object_dict({"a": 1}) == {"a": 1}
    assert _as_object_dict({1: "a"}) is None
    assert _as_object_dict([]) is None
    assert _as_int("7", field="id") == 7
    with pytest.raises(GitHubRequestError):
        _as_int(True, field="id")
    with pytest.raises(GitHubRequestError):
        _as_int("x", field="id")
    assert _preview_for_log("") == "<empty>"
    assert _preview_for_log("abcdef", limit=3) == "abc..."


def test_gateway_repr_hides_token() -> None:
    gateway = GitHubGateway("o", "r", token="secret")
    assert "secret" not in repr(gateway)
    assert gateway.full_name == "o/r"
