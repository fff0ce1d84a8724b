from __future__ import annotations

from pathlib import Path
import logging

from bun_diff_action.observability import log_event
from bun_diff_action.shell import CommandError, run


LOGGER = logging.getLogger("bun_diff_action.git_ops")
LOCKB_ATTRIBUTES_LINE = "*.lockb binary diff=lockb"


class DiffCommandError(CommandError):
    pass


class GitRepoManager:
    def __init__(self, checkout_path: Path, *, remote: str = "origin") -> None:
        self.checkout_path = checkout_path
        self.remote = remote

    def configure_lockb_textconv(self, *, textconv: str = "bun") -> None:
        log_event(
            LOGGER,
            "git_lockb_textconv_configured",
            checkout_path=str(self.checkout_path),
            textconv=textconv,
        )
        self._git("config", "diff.lockb.textconv", textconv)
        self._git("config", "diff.lockb.binary", "true")

        attributes_path = self.git_dir() / "info" / "attributes"
        attributes_path.parent.mkdir(parents=True, exist_ok=True)
        existing = ""
        if attributes_path.exists():
            existing = attributes_path.read_text(encoding="utf-8")
        if LOCKB_ATTRIBUTES_LINE in existing.splitlines():
            return
        with attributes_path.open("a", encoding="utf-8") as fh:
            if existing and not existing.endswith("\n"):
                fh.write("\n")
            fh.write(f"{LOCKB_ATTRIBUTES_LINE}\n")

    def git_dir(self) -> Path:
        raw = self._git("rev-parse", "--git-dir").strip()
        git_dir = Path(raw)
        if not git_dir.is_absolute():
            git_dir = self.checkout_path / git_dir
        return git_dir

    def fetch(self, ref: str, *, depth: int | None = None) -> None:
        log_event(
            LOGGER,
            "git_fetch",
            checkout_path=str(self.checkout_path),
            ref=ref,
            depth=depth,
        )
        argv = ["fetch"]
        if depth is not None:
            argv.append(f"--depth={depth}")
        argv.extend([self.remote, ref])
        try:
            self._git(*argv)
        except CommandError as exc:
            raise DiffCommandError(
                f"Unable to fetch {ref} from {self.remote}: {exc.stderr.strip() or exc}",
                argv=exc.argv,
                stderr=exc.stderr,
            ) from exc

    def diff(self, from_rev: str, to_rev: str, paths: tuple[str, ...]) -> str:
        if not paths:
            raise ValueError("diff requires at least one path")
        log_event(
            LOGGER,
            "git_diff",
            checkout_path=str(self.checkout_path),
            from_rev=from_rev,
            to_rev=to_rev,
            paths=paths,
        )
        try:
            return self._git("diff", from_rev, to_rev, "--", *paths)
        except CommandError as exc:
            raise DiffCommandError(
                f"git diff {from_rev} {to_rev} failed: {exc.stderr.strip() or exc}",
                argv=exc.argv,
                stderr=exc.stderr,
            ) from exc

    def remote_ref(self, branch: str) -> str:
        return f"{self.remote}/{branch}"

    def _git(self, *args: str) -> str:
        return run(["git", "-C", str(self.checkout_path), *args])
