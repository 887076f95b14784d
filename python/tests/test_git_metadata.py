"""
Tests for git metadata collection.

Parsing tests run everywhere; collector tests that need a real git binary
are skipped when git is missing.
"""

import asyncio
import json
import os
import shutil
import subprocess

import pytest

from filexplorer.git_metadata import (
    GitCommandError,
    GitMetadataCollector,
    git_info_from_row,
    is_not_git_repository_error,
    parse_remote_output,
    parse_remotes_json,
)

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
posix_only = pytest.mark.skipif(os.name != "posix", reason="needs /bin/sh scripts")


def git(cwd, *args):
    subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
    )


def make_repo(path):
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-q")
    git(path, "symbolic-ref", "HEAD", "refs/heads/main")
    git(path, "commit", "-q", "--allow-empty", "-m", "first")
    return path


@pytest.fixture
def collector(storage_manager, normalizer):
    return GitMetadataCollector(storage_manager, normalizer)


class TestParsing:
    def test_remote_output(self):
        output = (
            "origin\tgit@example.com:a.git (fetch)\n"
            "origin\tgit@example.com:a-push.git (push)\n"
            "mirror\thttps://example.com/m.git (fetch)\n"
        )
        assert parse_remote_output(output) == [
            {
                "name": "origin",
                "fetchUrl": "git@example.com:a.git",
                "pushUrl": "git@example.com:a-push.git",
            },
            {
                "name": "mirror",
                "fetchUrl": "https://example.com/m.git",
                "pushUrl": "https://example.com/m.git",
            },
        ]

    def test_remote_output_without_markers(self):
        assert parse_remote_output("origin url\n\nbad\n") == [
            {"name": "origin", "fetchUrl": "url", "pushUrl": "url"}
        ]

    def test_remotes_json_tolerates_garbage(self):
        assert parse_remotes_json(None) == []
        assert parse_remotes_json("{not json") == []
        assert parse_remotes_json('{"a": 1}') == []
        assert parse_remotes_json(json.dumps([{"name": "o", "fetchUrl": "u"}, {"x": 1}])) == [
            {"name": "o", "fetchUrl": "u", "pushUrl": None}
        ]

    def test_git_info_from_row(self):
        assert git_info_from_row(None) == {"isRepo": False}
        info = git_info_from_row(
            {
                "detected_at": 10,
                "current_branch": "main",
                "commit_count": 3,
                "branch_count": 2,
                "remote_count": 1,
                "remotes": json.dumps([{"name": "origin", "fetchUrl": "u", "pushUrl": "u"}]),
            }
        )
        assert info["isRepo"] is True
        assert info["isLocalOnly"] is False
        assert info["remoteCount"] == 1
        assert info["remotes"][0]["name"] == "origin"

    def test_not_a_repository_detection(self):
        error = GitCommandError(["status"], "exit status 128", stderr="fatal: not a git repository")
        assert is_not_git_repository_error(error)
        assert not is_not_git_repository_error(GitCommandError(["status"], "timed out"))


class TestCoalescing:
    @pytest.mark.asyncio
    async def test_concurrent_refreshes_share_one_collection(self, collector, monkeypatch):
        calls = []

        async def fake_gather(absolute, canonical):
            calls.append(canonical)
            await asyncio.sleep(0.05)
            return {"current_branch": "main"}

        monkeypatch.setattr(collector, "_gather", fake_gather)

        results = await asyncio.gather(collector.refresh("repo"), collector.refresh("repo"))

        assert calls == ["repo"]
        assert results[0] == results[1] == {"current_branch": "main"}
        assert collector.pending_count() == 0

    @pytest.mark.asyncio
    async def test_different_directories_are_independent(self, collector, monkeypatch):
        calls = []

        async def fake_gather(absolute, canonical):
            calls.append(canonical)
            return None

        monkeypatch.setattr(collector, "_gather", fake_gather)
        await asyncio.gather(collector.refresh("a"), collector.refresh("b"))
        assert sorted(calls) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_git_internal_paths_are_not_collected(self, collector):
        assert await collector.refresh(".git") is None
        assert collector.pending_count() == 0


class TestUnavailableGit:
    @pytest.mark.asyncio
    async def test_missing_binary_disables_collector(self, storage_manager, normalizer, workspace_root):
        (workspace_root / ".git").mkdir()
        collector = GitMetadataCollector(
            storage_manager, normalizer, git_binary="filexplorer-no-such-git"
        )

        assert await collector.refresh("/") is None
        assert collector.available is False
        # Further calls short-circuit
        assert await collector.refresh("/") is None

    @posix_only
    @pytest.mark.asyncio
    async def test_timeout_is_a_command_error(self, storage_manager, normalizer, tmp_path):
        script = tmp_path / "slow-git"
        script.write_text("#!/bin/sh\nexec sleep 5\n")
        script.chmod(0o755)
        collector = GitMetadataCollector(
            storage_manager, normalizer, git_binary=str(script), timeout=0.2
        )

        with pytest.raises(GitCommandError, match="timed out"):
            await collector.run_git(["status"], tmp_path)
        assert collector.available is True

    @posix_only
    @pytest.mark.asyncio
    async def test_timeout_kills_children_holding_the_pipes(self, storage_manager, normalizer, tmp_path):
        # The shell waits on a child that inherited stdout/stderr
        script = tmp_path / "wrapper-git"
        script.write_text("#!/bin/sh\nsleep 10\n")
        script.chmod(0o755)
        collector = GitMetadataCollector(
            storage_manager, normalizer, git_binary=str(script), timeout=0.3
        )
        loop = asyncio.get_running_loop()

        started = loop.time()
        with pytest.raises(GitCommandError, match="timed out"):
            await collector.run_git(["status"], tmp_path)

        assert loop.time() - started < 3.0

    @posix_only
    @pytest.mark.asyncio
    async def test_close_cancels_running_refresh(self, storage_manager, normalizer, workspace_root, tmp_path):
        from tests.fixtures.workspace import make_entry

        script = tmp_path / "hung-git"
        script.write_text("#!/bin/sh\nexec sleep 10\n")
        script.chmod(0o755)
        (workspace_root / ".git").mkdir()
        storage_manager.upsert_entry(make_entry("/", "directory"))
        collector = GitMetadataCollector(storage_manager, normalizer, git_binary=str(script))
        refresh = asyncio.ensure_future(collector.refresh("/"))
        await asyncio.sleep(0.2)
        assert collector.pending_count() == 1

        await asyncio.wait_for(collector.close(), timeout=3)

        assert collector.pending_count() == 0
        with pytest.raises(asyncio.CancelledError):
            await refresh

    @posix_only
    @pytest.mark.asyncio
    async def test_output_is_capped(self, storage_manager, normalizer, tmp_path):
        script = tmp_path / "chatty-git"
        script.write_text("#!/bin/sh\nhead -c 100000 /dev/zero\n")
        script.chmod(0o755)
        collector = GitMetadataCollector(
            storage_manager, normalizer, git_binary=str(script), max_output=1000
        )

        with pytest.raises(GitCommandError, match="exceeded"):
            await collector.run_git(["log"], tmp_path)


@requires_git
class TestRealRepositories:
    @pytest.mark.asyncio
    async def test_repository_root_gets_metadata(self, collector, storage_manager, index_service, workspace_root):
        make_repo(workspace_root / "repo")
        index_service.git_collector = collector
        index_service.scanner.git_collector = collector

        await index_service.initial_scan()

        entry = index_service.cache.decorate(index_service.cache.get("repo"))
        assert entry["git"]["isRepo"] is True
        assert entry["git"]["currentBranch"] == "main"
        assert entry["git"]["commitCount"] == 1
        assert entry["git"]["branchCount"] == 1
        assert entry["git"]["isLocalOnly"] is True
        assert index_service.cache.git_info(index_service.cache.get("src")) == {"isRepo": False}

    @pytest.mark.asyncio
    async def test_subdirectory_of_repository_gets_nothing(self, collector, storage_manager, workspace_root):
        """An invalid .git inside a repo resolves to the outer top-level."""
        from tests.fixtures.workspace import make_entry

        repo = make_repo(workspace_root / "repo")
        (repo / "pkg" / ".git").mkdir(parents=True)
        for path in ("/", "repo", "repo/pkg"):
            storage_manager.upsert_entry(make_entry(path, "directory"))

        assert await collector.refresh("repo/pkg") is None
        assert storage_manager.get_git_metadata("repo/pkg") is None

    @pytest.mark.asyncio
    async def test_remotes_are_collected(self, collector, storage_manager, workspace_root):
        from tests.fixtures.workspace import make_entry

        repo = make_repo(workspace_root / "repo")
        git(repo, "remote", "add", "origin", "https://example.com/repo.git")
        storage_manager.upsert_entry(make_entry("/", "directory"))
        storage_manager.upsert_entry(make_entry("repo", "directory"))

        metadata = await collector.refresh("repo")

        assert metadata["remotes"] == [
            {
                "name": "origin",
                "fetchUrl": "https://example.com/repo.git",
                "pushUrl": "https://example.com/repo.git",
            }
        ]
        assert storage_manager.get_git_metadata("repo")["remote_count"] == 1

    @pytest.mark.asyncio
    async def test_git_internal_change_refreshes_owner(
        self, collector, index_service, broadcaster, workspace_root
    ):
        from filexplorer.watcher import FsEvent, FsEventKind

        repo = make_repo(workspace_root / "repo")
        index_service.git_collector = collector
        index_service.scanner.git_collector = collector
        await index_service.initial_scan()
        _, queue = broadcaster.subscribe()

        git(repo, "commit", "-q", "--allow-empty", "-m", "second")
        await index_service.apply_event(
            FsEvent(kind=FsEventKind.CHANGE_FILE, path=str(repo / ".git" / "refs" / "heads" / "main"))
        )
        await index_service.wait_git_idle()

        assert queue.get_nowait() == {"type": "entry-updated", "path": "repo"}
        assert index_service.storage.get_git_metadata("repo")["commit_count"] == 2

        # Nothing changed since: no second notification
        await index_service.apply_event(
            FsEvent(kind=FsEventKind.CHANGE_FILE, path=str(repo / ".git" / "index"))
        )
        await index_service.wait_git_idle()
        assert queue.empty()

    @pytest.mark.asyncio
    async def test_removed_git_dir_clears_metadata(self, collector, storage_manager, workspace_root):
        from tests.fixtures.workspace import make_entry

        repo = make_repo(workspace_root / "repo")
        storage_manager.upsert_entry(make_entry("/", "directory"))
        storage_manager.upsert_entry(make_entry("repo", "directory"))
        assert await collector.refresh("repo") is not None

        shutil.rmtree(repo / ".git")

        assert await collector.refresh("repo") is None
        assert storage_manager.get_git_metadata("repo") is None
