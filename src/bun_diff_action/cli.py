from __future__ import annotations

import argparse
import os
from pathlib import Path
import sys
from typing import TextIO

from bun_diff_action import __version__
from bun_diff_action.actions import build_action
from bun_diff_action.bun_installer import BunInstaller, ToolMissingError, has_bun
from bun_diff_action.config import ActionConfig, ConfigError, load_config
from bun_diff_action.git_ops import GitRepoManager
from bun_diff_action.github_gateway import GitHubGateway, GitHubRequestError
from bun_diff_action.models import ReconcileSummary
from bun_diff_action.observability import configure_logging
from bun_diff_action.reconcile import reconcile
from bun_diff_action.shell import CommandError


_FATAL_ERRORS: tuple[type[Exception], ...] = (
    ConfigError,
    ToolMissingError,
    GitHubRequestError,
    CommandError,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bun-diff-action")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run", help="Post, update, and delete bun.lockb diff comments for the current event"
    )
    run_parser.add_argument(
        "--skip-install",
        action="store_true",
        help="Do not download bun when it is not already on PATH",
    )
    run_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging to stderr",
    )

    install_parser = subparsers.add_parser("install", help="Download bun and add it to PATH")
    install_parser.add_argument(
        "--bun-version",
        type=str,
        default=None,
        help="Release to install (default: the bun-version input, then latest)",
    )
    install_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging to stderr",
    )

    return parser


def main() -> None:
    args = build_parser().parse_args()
    configure_logging(bool(getattr(args, "verbose", False)))
    try:
        config = load_config(os.environ)
        if config.verbose:
            configure_logging(True)

        if args.command == "run":
            _cmd_run(config, skip_install=bool(args.skip_install))
            return
        if args.command == "install":
            _cmd_install(config, version=args.bun_version or config.bun_version)
            return
    except _FATAL_ERRORS as exc:
        _fail(str(exc))

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_run(config: ActionConfig, *, skip_install: bool) -> None:
    github = _github(config)
    available = has_bun()
    if not available and not skip_install:
        _installer(config, github).install(config.bun_version)
        available = has_bun()
    if not available:
        raise ToolMissingError("bun is not available on PATH; install it or drop --skip-install")

    git = GitRepoManager(config.runner.workspace)
    git.configure_lockb_textconv()

    action = build_action(config.event, github=github, git=git)
    summary = reconcile(action)
    _write_outputs(config.runner.github_output_file, summary)


def _cmd_install(config: ActionConfig, *, version: str) -> None:
    installed = _installer(config, _github(config)).install(version)
    print(f"Installed bun {installed}")


def _github(config: ActionConfig) -> GitHubGateway:
    return GitHubGateway(config.repo.owner, config.repo.name, token=config.token)


def _installer(config: ActionConfig, github: GitHubGateway) -> BunInstaller:
    return BunInstaller(
        github,
        tool_cache_dir=config.runner.tool_cache_dir,
        temp_dir=config.runner.temp_dir,
        github_path_file=config.runner.github_path_file,
    )


def _write_outputs(path: Path | None, summary: ReconcileSummary) -> None:
    if path is None:
        return
    with path.open("a", encoding="utf-8") as fh:
        fh.write(f"created={len(summary.created)}\n")
        fh.write(f"updated={len(summary.updated)}\n")
        fh.write(f"deleted={len(summary.deleted)}\n")


def _fail(message: str, *, stream: TextIO | None = None) -> None:
    out = stream if stream is not None else sys.stdout
    out.write(f"::error::{_escape_workflow_data(message)}\n")
    out.flush()
    raise SystemExit(1)


def _escape_workflow_data(value: str) -> str:
    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")
