"""
Repository-scoped git primitives.

Every command runs as `git <args>` with the repository root as working
directory. Non-zero exits raise GitCommandError unless `check=False`.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

from repo_coordinator.core.errors import GitCommandError, OperationTimeoutError
from repo_coordinator.multirepo.repo_registry import WORKSPACE_MARKERS

logger = logging.getLogger(__name__)

_WORKSPACE_INDICATORS = (".workspace", "workspace.json", "lerna.json", "rush.json")

PathLike = Union[str, Path]


@dataclass(frozen=True)
class GitRepoInfo:
    is_git_repo: bool
    current_path: str
    repo_root: Optional[str] = None
    relative_path: Optional[str] = None


@dataclass(frozen=True)
class GitResult:
    args: tuple
    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


def _is_workspace_root(path: Path) -> bool:
    try:
        found = sum(1 for marker in ("loqa", *WORKSPACE_MARKERS) if (path / marker).is_dir())
    except OSError:
        return False
    if found >= 2:
        return True
    return any((path / indicator).exists() for indicator in _WORKSPACE_INDICATORS)


def detect_git_repo(start: Optional[PathLike] = None) -> GitRepoInfo:
    """
    Walk up from `start` looking for a `.git` entry. The walk stops at a
    workspace root so a repo-less directory never resolves to an outer repo.
    """
    origin = Path(start or os.getcwd()).resolve()
    current = origin
    while current.parent != current:
        if (current / ".git").exists():
            relative = "." if current == origin else str(origin.relative_to(current))
            return GitRepoInfo(True, str(origin), str(current), relative)
        if _is_workspace_root(current):
            break
        current = current.parent
    return GitRepoInfo(False, str(origin))


async def run_git(
    args: Sequence[str],
    cwd: PathLike,
    timeout: Optional[float] = 120.0,
    check: bool = True,
) -> GitResult:
    """
    Run one git command in `cwd`.

    Raises:
        GitCommandError: non-zero exit when `check` is set
        OperationTimeoutError: the command outlived `timeout`
    """
    logger.debug(f"git {' '.join(args)} (cwd={cwd})")
    proc = await asyncio.create_subprocess_exec(
        "git",
        *args,
        cwd=str(cwd),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise OperationTimeoutError(timeout) from None

    result = GitResult(
        args=tuple(args),
        returncode=proc.returncode,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )
    if check and not result.success:
        raise GitCommandError(args, result.returncode, result.stderr)
    return result


async def changed_files(
    repo_path: PathLike, base_branch: Optional[str] = "main", timeout: float = 120.0
) -> List[str]:
    """Uncommitted, untracked, and (when `base_branch` exists) branch-local changes"""
    commands: List[List[str]] = [
        ["diff", "--name-only", "HEAD"],
        ["ls-files", "--others", "--exclude-standard"],
    ]
    if base_branch:
        commands.append(["diff", "--name-only", f"{base_branch}...HEAD"])

    files: List[str] = []
    for args in commands:
        result = await run_git(args, repo_path, timeout=timeout, check=False)
        if not result.success:
            logger.debug(f"git {' '.join(args)} failed in {repo_path}: {result.stderr.strip()}")
            continue
        for line in result.stdout.splitlines():
            line = line.strip()
            if line and line not in files:
                files.append(line)
    return files
