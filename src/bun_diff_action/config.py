from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import json
from pathlib import Path
from typing import cast

from bun_diff_action.models import CommitContext, EventContext, PullRequestContext


_PULL_REQUEST_EVENTS = frozenset({"pull_request", "pull_request_target"})
_COMMIT_EVENTS = frozenset({"push"})
_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"", "0", "false", "no", "off"})


class ConfigError(ValueError):
    pass


class UnsupportedEventError(ConfigError):
    pass


class MissingContextError(ConfigError):
    pass


@dataclass(frozen=True)
class RepoConfig:
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class RunnerConfig:
    workspace: Path
    tool_cache_dir: Path
    temp_dir: Path
    github_path_file: Path | None
    github_output_file: Path | None
    debug: bool = False


@dataclass(frozen=True)
class ActionConfig:
    repo: RepoConfig
    event: EventContext
    runner: RunnerConfig
    token: str | None
    bun_version: str = "latest"
    verbose: bool = False


def load_config(environ: Mapping[str, str]) -> ActionConfig:
    repo = _parse_repository(_require_env(environ, "GITHUB_REPOSITORY"))
    event_name = _require_env(environ, "GITHUB_EVENT_NAME")
    payload = _load_event_payload(environ.get("GITHUB_EVENT_PATH"))
    event = resolve_event_context(
        event_name=event_name,
        payload=payload,
        sha=environ.get("GITHUB_SHA", "").strip(),
    )

    workspace = Path(environ.get("GITHUB_WORKSPACE") or ".").expanduser()
    temp_dir = Path(environ.get("RUNNER_TEMP") or workspace / ".bun-diff-action" / "tmp")
    runner = RunnerConfig(
        workspace=workspace,
        tool_cache_dir=Path(
            environ.get("RUNNER_TOOL_CACHE") or workspace / ".bun-diff-action" / "tool-cache"
        ),
        temp_dir=temp_dir,
        github_path_file=_optional_path(environ, "GITHUB_PATH"),
        github_output_file=_optional_path(environ, "GITHUB_OUTPUT"),
        debug=_env_flag(environ, "RUNNER_DEBUG", default=False),
    )

    token = _input(environ, "github-token") or environ.get("GITHUB_TOKEN") or None
    bun_version = _input(environ, "bun-version") or "latest"

    return ActionConfig(
        repo=repo,
        event=event,
        runner=runner,
        token=token,
        bun_version=bun_version,
        verbose=_input_flag(environ, "verbose") or runner.debug,
    )


def resolve_event_context(
    *, event_name: str, payload: dict[str, object], sha: str
) -> EventContext:
    normalized = event_name.strip()
    if normalized in _PULL_REQUEST_EVENTS:
        raw_pr = payload.get("pull_request")
        if not isinstance(raw_pr, dict):
            raise MissingContextError(
                f"Event {normalized!r} was triggered without a pull_request payload"
            )
        pr = cast(dict[str, object], raw_pr)
        return EventContext(
            kind="pull_request",
            event_name=normalized,
            pull_request=PullRequestContext(
                number=_require_int(pr, "number"),
                base_ref=_require_str(_require_table(pr, "base"), "ref"),
                head_sha=_require_str(_require_table(pr, "head"), "sha"),
            ),
        )
    if normalized in _COMMIT_EVENTS:
        commit_sha = sha or _optional_str(payload, "after") or ""
        if not commit_sha:
            raise MissingContextError(f"Event {normalized!r} did not provide a commit SHA")
        return EventContext(
            kind="commit", event_name=normalized, commit=CommitContext(sha=commit_sha)
        )
    raise UnsupportedEventError(f"Unsupported event: {normalized or '<empty>'}")


def _load_event_payload(raw_path: str | None) -> dict[str, object]:
    if not raw_path:
        return {}
    path = Path(raw_path)
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"GITHUB_EVENT_PATH does not exist: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"GITHUB_EVENT_PATH is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("GITHUB_EVENT_PATH must contain a JSON object")
    return cast(dict[str, object], data)


def _parse_repository(value: str) -> RepoConfig:
    owner, sep, name = value.strip().partition("/")
    if not sep or not owner or not name or "/" in name:
        raise ConfigError(f"GITHUB_REPOSITORY must look like owner/name, got {value!r}")
    return RepoConfig(owner=owner, name=name)


def _input(environ: Mapping[str, str], name: str) -> str | None:
    # The runner upper-cases input names but keeps dashes; some wrappers also swap them.
    for key in (f"INPUT_{name.upper()}", f"INPUT_{name.upper().replace('-', '_')}"):
        value = environ.get(key)
        if value is not None and value.strip():
            return value.strip()
    return None


def _input_flag(environ: Mapping[str, str], name: str) -> bool:
    raw = _input(environ, name)
    if raw is None:
        return False
    return _parse_flag(raw, key=f"input {name}")


def _env_flag(environ: Mapping[str, str], key: str, *, default: bool) -> bool:
    raw = environ.get(key)
    if raw is None:
        return default
    return _parse_flag(raw, key=key)


def _parse_flag(raw: str, *, key: str) -> bool:
    normalized = raw.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ConfigError(f"{key} must be a boolean, got {raw!r}")


def _require_env(environ: Mapping[str, str], key: str) -> str:
    value = environ.get(key, "").strip()
    if not value:
        raise ConfigError(f"{key} must be set")
    return value


def _optional_path(environ: Mapping[str, str], key: str) -> Path | None:
    value = environ.get(key, "").strip()
    if not value:
        return None
    return Path(value)


def _require_table(data: dict[str, object], key: str) -> dict[str, object]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise MissingContextError(f"pull_request.{key} must be an object")
    return cast(dict[str, object], value)


def _require_str(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MissingContextError(f"pull_request field {key!r} must be a non-empty string")
    return value


def _optional_str(data: dict[str, object], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string")
    return value


def _require_int(data: dict[str, object], key: str) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise MissingContextError(f"pull_request field {key!r} must be an integer")
    return value
