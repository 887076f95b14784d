"""
Repository metadata for directories that are git working-tree roots.

For a candidate directory we:
1. check it is a directory with a .git entry
2. ask git for the real top-level (sub-directories of a repo get nothing)
3. collect branch / commit count / branch count / remotes, each on its own
   so one failing command doesn't lose the others

git is a black box here: we run it with stdin closed, a timeout and an
output cap, and parse its text. If the binary is missing the collector
switches itself off for the rest of the process.
"""

import asyncio
import json
import logging
import os
import shutil
import signal
import time
from pathlib import Path
from typing import Any, Optional

from filexplorer.errors import GitUnavailableError
from filexplorer.ignore_patterns import is_unsupported_error
from filexplorer.paths import GIT_DIR_NAME, PathNormalizer
from filexplorer.storage import StorageManager

logger = logging.getLogger("filexplorer.git")

GIT_COMMAND_TIMEOUT = 5.0
GIT_MAX_OUTPUT = 2 * 1024 * 1024
_READ_CHUNK = 64 * 1024
KILL_WAIT_TIMEOUT = 1.0


class GitCommandError(Exception):
    """git ran but failed (non-zero exit, timeout, oversized output)."""

    def __init__(self, args: list[str], message: str, stdout: str = "", stderr: str = ""):
        super().__init__(f"git {' '.join(args)}: {message}")
        self.args_list = args
        self.stdout = stdout
        self.stderr = stderr


def is_not_git_repository_error(exc: BaseException) -> bool:
    """True when git says the directory isn't (validly) a repository."""
    text = " ".join(
        [getattr(exc, "stderr", "") or "", getattr(exc, "stdout", "") or "", str(exc)]
    ).lower()
    return "not a git repository" in text or "invalid gitfile format" in text


def parse_remote_output(output: str) -> list[dict[str, Optional[str]]]:
    """
    Parse `git remote -v` into one dict per remote name.

        origin  git@host:a.git (fetch)
        origin  git@host:a.git (push)

    A line without a (fetch)/(push) marker fills whichever side is empty.
    Push falls back to fetch when git only reported one direction.
    """
    remotes: dict[str, dict[str, Optional[str]]] = {}
    for raw_line in (output or "").splitlines():
        parts = raw_line.split()
        if len(parts) < 2:
            continue
        name, url = parts[0], parts[1]
        kind = parts[2] if len(parts) > 2 else None
        remote = remotes.setdefault(name, {"name": name, "fetchUrl": None, "pushUrl": None})
        if kind == "(fetch)":
            remote["fetchUrl"] = url
        elif kind == "(push)":
            remote["pushUrl"] = url
        else:
            remote["fetchUrl"] = remote["fetchUrl"] or url
            remote["pushUrl"] = remote["pushUrl"] or url

    return [
        {
            "name": remote["name"],
            "fetchUrl": remote["fetchUrl"] or None,
            "pushUrl": remote["pushUrl"] or remote["fetchUrl"] or None,
        }
        for remote in remotes.values()
    ]


def parse_remotes_json(raw: Optional[str]) -> list[dict[str, Optional[str]]]:
    """Decode the remotes column; malformed data reads as no remotes."""
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except ValueError:
        return []
    if not isinstance(parsed, list):
        return []
    remotes = []
    for item in parsed:
        if not isinstance(item, dict) or not item.get("name"):
            continue
        remotes.append(
            {
                "name": str(item["name"]),
                "fetchUrl": str(item["fetchUrl"]) if item.get("fetchUrl") else None,
                "pushUrl": str(item["pushUrl"]) if item.get("pushUrl") else None,
            }
        )
    return remotes


def git_info_from_row(row: Optional[dict]) -> dict[str, Any]:
    """Shape a git_metadata row for API output (directories only)."""
    if not row:
        return {"isRepo": False}
    remotes = parse_remotes_json(row.get("remotes"))
    remote_count = row.get("remote_count")
    if not isinstance(remote_count, int):
        remote_count = len(remotes)
    return {
        "isRepo": True,
        "detectedAt": row.get("detected_at"),
        "currentBranch": row.get("current_branch") or None,
        "commitCount": row.get("commit_count"),
        "branchCount": row.get("branch_count"),
        "remoteCount": remote_count,
        "isLocalOnly": remote_count == 0,
        "remotes": remotes,
    }


async def _read_capped(stream: asyncio.StreamReader, cap: int) -> bytes:
    chunks = []
    total = 0
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            break
        total += len(chunk)
        if total > cap:
            raise OverflowError(f"output exceeded {cap} bytes")
        chunks.append(chunk)
    return b"".join(chunks)


class GitMetadataCollector:
    """
    Collects and stores git metadata per repository-root directory.

    Concurrent refreshes for the same directory share one in-flight task.
    Different directories are collected independently.
    """

    def __init__(
        self,
        storage: StorageManager,
        normalizer: PathNormalizer,
        git_binary: str = "git",
        timeout: float = GIT_COMMAND_TIMEOUT,
        max_output: int = GIT_MAX_OUTPUT,
    ):
        self.storage = storage
        self.normalizer = normalizer
        self.git_binary = git_binary
        self.timeout = timeout
        self.max_output = max_output
        self._unavailable = False
        self._pending: dict[str, asyncio.Task] = {}

    @property
    def available(self) -> bool:
        return not self._unavailable

    def _disable(self) -> None:
        if not self._unavailable:
            self._unavailable = True
            logger.warning(
                f"{self.git_binary} is not available on PATH; skipping repository metadata."
            )

    async def run_git(self, args: list[str], cwd: Path) -> str:
        """
        Run one git command and return its stdout.

        Raises:
            GitUnavailableError: git can't be executed (collector now disabled)
            GitCommandError: git ran and failed, timed out, or talked too much
        """
        if self._unavailable:
            raise GitUnavailableError(f"{self.git_binary} unavailable")

        try:
            proc = await asyncio.create_subprocess_exec(
                self.git_binary,
                *args,
                cwd=str(cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=os.name == "posix",
            )
        except (FileNotFoundError, PermissionError) as e:
            # A vanished cwd also surfaces as FileNotFoundError; only a
            # missing binary disables the collector.
            if shutil.which(self.git_binary) is None:
                self._disable()
                raise GitUnavailableError(f"{self.git_binary} unavailable") from e
            raise GitCommandError(args, str(e)) from e

        try:
            stdout, stderr, _ = await asyncio.wait_for(
                asyncio.gather(
                    _read_capped(proc.stdout, self.max_output),
                    _read_capped(proc.stderr, self.max_output),
                    proc.wait(),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            await self._kill(proc)
            raise GitCommandError(args, f"timed out after {self.timeout}s") from e
        except OverflowError as e:
            await self._kill(proc)
            raise GitCommandError(args, str(e)) from e
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        out_text = stdout.decode("utf-8", errors="replace")
        err_text = stderr.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise GitCommandError(
                args, f"exit status {proc.returncode}", stdout=out_text, stderr=err_text
            )
        return out_text

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        """Kill git and anything it spawned, then reap it (bounded)."""
        if hasattr(os, "killpg"):
            # git runs in its own session: hooks and fsmonitor helpers holding
            # the pipes go down with it, even after git itself has exited
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError):
                pass
        elif proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        try:
            await asyncio.wait_for(proc.wait(), timeout=KILL_WAIT_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"git process {proc.pid} did not exit after kill")

    async def refresh(self, canonical_path: str, absolute_path: Optional[Path] = None) -> Optional[dict]:
        """
        (Re)collect metadata for one directory.

        Returns the stored metadata, or None when the directory is not a
        repository root, git is unavailable, or collection failed. Never raises
        for git or filesystem trouble.
        """
        if not canonical_path or PathNormalizer.is_git_internal(canonical_path):
            return None

        task = self._pending.get(canonical_path)
        if task is None:
            absolute = absolute_path or self.normalizer.to_absolute(canonical_path)
            task = asyncio.ensure_future(self._refresh_guarded(absolute, canonical_path))
            self._pending[canonical_path] = task

            def _forget(done: asyncio.Task, key: str = canonical_path) -> None:
                if self._pending.get(key) is done:
                    del self._pending[key]

            task.add_done_callback(_forget)
        # shield: one impatient caller must not cancel the shared refresh
        return await asyncio.shield(task)

    async def refresh_for_git_internal(self, canonical_path: str) -> Optional[str]:
        """
        Refresh the repository owning a path inside a .git directory.

        Returns the repository's canonical path, or None if the path isn't
        git-internal.
        """
        repo_path = PathNormalizer.repo_path_from_git_internal(canonical_path)
        if repo_path is None:
            return None
        await self.refresh(repo_path)
        return repo_path

    def pending_count(self) -> int:
        return len(self._pending)

    async def close(self) -> None:
        """Cancel every in-flight refresh and its git process (shutdown)."""
        tasks = list(self._pending.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _refresh_guarded(self, absolute: Path, canonical: str) -> Optional[dict]:
        try:
            return await self._gather(absolute, canonical)
        except GitUnavailableError:
            return None
        except Exception as e:
            logger.warning(f"Failed to update git metadata for {canonical}: {e}")
            return None

    def _clear(self, canonical: str) -> None:
        self.storage.delete_git_metadata(canonical)

    async def _gather(self, absolute: Path, canonical: str) -> Optional[dict]:
        if self._unavailable:
            return None

        try:
            if not absolute.is_dir():
                self._clear(canonical)
                return None
        except OSError as e:
            if is_unsupported_error(e):
                return None
            raise

        try:
            (absolute / GIT_DIR_NAME).stat()
        except (FileNotFoundError, NotADirectoryError):
            self._clear(canonical)
            return None
        except OSError as e:
            if is_unsupported_error(e):
                return None
            raise

        try:
            top_level = (await self.run_git(["rev-parse", "--show-toplevel"], absolute)).strip()
        except GitCommandError as e:
            if is_not_git_repository_error(e):
                self._clear(canonical)
                return None
            logger.warning(f"Failed to resolve git root for {absolute}: {e}")
            return None

        repo_canonical = self.normalizer.to_canonical(Path(top_level).resolve())
        if PathNormalizer.is_outside(repo_canonical) or repo_canonical != canonical:
            # Metadata only lives on the repository root itself.
            self._clear(canonical)
            return None

        metadata = {
            "detected_at": int(time.time() * 1000),
            "current_branch": await self._current_branch(absolute),
            "commit_count": await self._commit_count(absolute),
            "branch_count": await self._branch_count(absolute),
            "remotes": await self._remotes(absolute),
        }
        if not self.storage.upsert_git_metadata(canonical, metadata):
            return None
        logger.debug(f"Git metadata refreshed for {canonical}: {metadata['current_branch']}")
        return metadata

    async def _current_branch(self, cwd: Path) -> Optional[str]:
        try:
            branch = (await self.run_git(["symbolic-ref", "--quiet", "--short", "HEAD"], cwd)).strip()
            return branch or None
        except GitCommandError as e:
            if is_not_git_repository_error(e):
                return None
        # Detached HEAD: report the short commit id instead
        try:
            return (await self.run_git(["rev-parse", "--short", "HEAD"], cwd)).strip() or None
        except GitCommandError:
            return None

    async def _commit_count(self, cwd: Path) -> Optional[int]:
        try:
            output = await self.run_git(["rev-list", "--all", "--count"], cwd)
        except GitCommandError:
            return None
        try:
            return int(output.strip())
        except ValueError:
            return None

    async def _branch_count(self, cwd: Path) -> Optional[int]:
        try:
            output = await self.run_git(["branch", "--format=%(refname:short)"], cwd)
        except GitCommandError:
            return None
        return len([line for line in output.splitlines() if line.strip()])

    async def _remotes(self, cwd: Path) -> list[dict[str, Optional[str]]]:
        try:
            output = await self.run_git(["remote", "-v"], cwd)
        except GitCommandError:
            return []
        return parse_remote_output(output)
