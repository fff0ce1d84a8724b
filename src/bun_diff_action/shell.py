from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
import logging
import os
import subprocess


class CommandError(RuntimeError):
    def __init__(self, message: str, *, argv: tuple[str, ...] = (), stderr: str = "") -> None:
        super().__init__(message)
        self.argv = argv
        self.stderr = stderr


LOGGER = logging.getLogger("bun_diff_action.shell")


def _preview(text: str, *, limit: int = 200) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def run(
    argv: list[str],
    *,
    cwd: Path | None = None,
    input_text: str | None = None,
    env: Mapping[str, str] | None = None,
    check: bool = True,
) -> str:
    proc_env: dict[str, str] | None = None
    if env:
        proc_env = dict(os.environ)
        proc_env.update(env)
    try:
        proc = subprocess.run(
            argv,
            cwd=str(cwd) if cwd else None,
            input=input_text,
            env=proc_env,
            text=True,
            capture_output=True,
            check=False,
        )
    except FileNotFoundError as exc:
        LOGGER.error("event=command_not_found command=%s", " ".join(argv))
        raise CommandError(
            f"Command not found: {argv[0]}", argv=tuple(argv), stderr=str(exc)
        ) from exc
    LOGGER.debug("event=command_finished command=%s exit_code=%s", " ".join(argv), proc.returncode)
    # With check off a failure still raises when there is no stdout left to parse.
    if proc.returncode != 0 and (check or not proc.stdout.strip()):
        LOGGER.error(
            "event=command_failed command=%s exit_code=%s stderr=%s stdout=%s",
            " ".join(argv),
            proc.returncode,
            _preview(proc.stderr),
            _preview(proc.stdout),
        )
        raise CommandError(
            "Command failed\n"
            f"cmd: {' '.join(argv)}\n"
            f"exit: {proc.returncode}\n"
            f"stdout:\n{proc.stdout}\n"
            f"stderr:\n{proc.stderr}",
            argv=tuple(argv),
            stderr=proc.stderr,
        )
    return proc.stdout
