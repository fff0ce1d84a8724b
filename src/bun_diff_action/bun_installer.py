from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path
import platform
import shutil
import stat
import zipfile

from bun_diff_action.github_gateway import GitHubGateway
from bun_diff_action.observability import log_event
from bun_diff_action.shell import CommandError, run


LOGGER = logging.getLogger("bun_diff_action.bun_installer")
BUN_OWNER = "oven-sh"
BUN_REPO = "bun"
_PLATFORMS = {"darwin": "darwin", "linux": "linux", "windows": "windows"}
_ARCHES = {"x86_64": "x64", "amd64": "x64", "x64": "x64", "arm64": "aarch64", "aarch64": "aarch64"}


class ToolMissingError(RuntimeError):
    pass


@dataclass(frozen=True)
class BunTarget:
    platform: str
    arch: str

    @property
    def asset_name(self) -> str:
        return f"bun-{self.platform}-{self.arch}.zip"

    @property
    def binary_name(self) -> str:
        return "bun.exe" if self.platform == "windows" else "bun"


def detect_target(system: str | None = None, machine: str | None = None) -> BunTarget:
    raw_system = (system if system is not None else platform.system()).strip().lower()
    raw_machine = (machine if machine is not None else platform.machine()).strip().lower()
    return BunTarget(
        platform=_PLATFORMS.get(raw_system, "linux"),
        arch=_ARCHES.get(raw_machine, "x64"),
    )


def download_url(version: str, target: BunTarget) -> str:
    return (
        f"https://github.com/{BUN_OWNER}/{BUN_REPO}/releases/download/"
        f"bun-{version}/{target.asset_name}"
    )


def has_bun() -> bool:
    try:
        version = run(["bun", "--version"]).strip()
    except CommandError:
        return False
    log_event(LOGGER, "bun_detected", version=version)
    return True


class BunInstaller:
    def __init__(
        self,
        github: GitHubGateway,
        *,
        tool_cache_dir: Path,
        temp_dir: Path,
        github_path_file: Path | None = None,
        target: BunTarget | None = None,
    ) -> None:
        self.github = github
        self.tool_cache_dir = tool_cache_dir
        self.temp_dir = temp_dir
        self.github_path_file = github_path_file
        self.target = target or detect_target()

    def resolve_version(self, version: str) -> str:
        requested = version.strip()
        if requested == "latest":
            tag = self.github.get_latest_release_tag(BUN_OWNER, BUN_REPO)
            return tag.removeprefix("bun-")
        if not requested.startswith("v"):
            return f"v{requested}"
        return requested

    def cache_dir(self, version: str) -> Path:
        return self.tool_cache_dir / "bun" / version.removeprefix("v") / self.target.arch

    def install(self, version: str) -> str:
        canonical = self.resolve_version(version)
        cache_dir = self.cache_dir(canonical)
        bin_dir = cache_dir / self.target.asset_name.removesuffix(".zip")
        marker = cache_dir.with_name(f"{cache_dir.name}.complete")

        if marker.exists() and (bin_dir / self.target.binary_name).exists():
            log_event(LOGGER, "bun_cache_hit", version=canonical, cache_dir=str(cache_dir))
            self._add_path(bin_dir)
            return canonical

        log_event(
            LOGGER,
            "bun_download_started",
            version=canonical,
            url=download_url(canonical, self.target),
        )
        archive = self.github.download_release_asset(
            owner=BUN_OWNER,
            repo=BUN_REPO,
            tag=f"bun-{canonical}",
            asset_name=self.target.asset_name,
            dest_dir=self.temp_dir / f"bun-{canonical}",
        )
        if cache_dir.exists():
            shutil.rmtree(cache_dir)
        cache_dir.mkdir(parents=True)
        with zipfile.ZipFile(archive) as zf:
            zf.extractall(cache_dir)

        binary = bin_dir / self.target.binary_name
        if not binary.exists():
            raise ToolMissingError(f"{self.target.asset_name} did not contain {binary.name}")
        binary.chmod(binary.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        marker.touch()

        log_event(LOGGER, "bun_installed", version=canonical, bin_dir=str(bin_dir))
        self._add_path(bin_dir)
        return canonical

    def _add_path(self, bin_dir: Path) -> None:
        current = os.environ.get("PATH", "")
        os.environ["PATH"] = f"{bin_dir}{os.pathsep}{current}" if current else str(bin_dir)
        if self.github_path_file is not None:
            with self.github_path_file.open("a", encoding="utf-8") as fh:
                fh.write(f"{bin_dir}\n")
