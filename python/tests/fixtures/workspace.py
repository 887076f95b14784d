"""
Workspace fixtures: a small on-disk tree and the index components over it.

Tree:
    project/
        README.md
        src/
            a.txt        "hello" (5 bytes)
            b/
                c.txt
"""

import pytest
import pytest_asyncio


def make_entry(path: str, kind: str = "file", size: int = 1, mtime: int = 1000) -> dict:
    """Entry row without touching the filesystem."""
    from filexplorer.paths import PathNormalizer

    name = path.rsplit("/", 1)[-1] if path != "/" else "project"
    extension = name.rsplit(".", 1)[1].lower() if kind == "file" and "." in name else ""
    return {
        "path": path,
        "name": name,
        "parent_path": PathNormalizer.parent_of(path),
        "type": kind,
        "size": size if kind == "file" else None,
        "mtime": mtime,
        "extension": extension,
        "depth": PathNormalizer.depth_of(path),
    }


@pytest.fixture
def workspace_root(tmp_path):
    """Create the sample tree and return its root."""
    root = tmp_path / "project"
    (root / "src" / "b").mkdir(parents=True)
    (root / "src" / "a.txt").write_text("hello")
    (root / "src" / "b" / "c.txt").write_text("nested file\n")
    (root / "README.md").write_text("# project\n")
    return root


@pytest.fixture
def normalizer(workspace_root):
    from filexplorer.paths import PathNormalizer

    return PathNormalizer(workspace_root)


@pytest.fixture
def ignore_rules(normalizer):
    from filexplorer.ignore_patterns import IgnoreRules

    return IgnoreRules(normalizer)


@pytest.fixture
def broadcaster():
    from filexplorer.broadcast import ChangeBroadcaster

    return ChangeBroadcaster()


@pytest.fixture
def index_service(normalizer, storage_manager, ignore_rules, broadcaster):
    """IndexService without git collection (no subprocesses)."""
    from filexplorer.index import IndexService

    return IndexService(normalizer, storage_manager, ignore_rules, None, broadcaster)


@pytest_asyncio.fixture
async def scanned_service(index_service):
    """IndexService after an initial scan of the sample tree."""
    await index_service.initial_scan()
    return index_service


@pytest.fixture
def query_engine(index_service, normalizer):
    from filexplorer.index import QueryEngine

    return QueryEngine(lambda: index_service.cache, normalizer.root_name)


@pytest.fixture
def seeded_service(index_service):
    """
    IndexService whose store is filled directly (no scan).

    Entries: /, src, src/a.txt, src/b, src/b/c.txt, docs, docs/guide.md
    Tags: src/a.txt lang:txt, src/b/c.txt lang:txt, docs/guide.md lang:md
    """
    storage = index_service.storage
    for path, kind in [
        ("/", "directory"),
        ("src", "directory"),
        ("src/a.txt", "file"),
        ("src/b", "directory"),
        ("src/b/c.txt", "file"),
        ("docs", "directory"),
        ("docs/guide.md", "file"),
    ]:
        storage.upsert_entry(make_entry(path, kind))
    storage.add_tag("src/a.txt", "lang", "txt")
    storage.add_tag("src/b/c.txt", "lang", "txt")
    storage.add_tag("docs/guide.md", "lang", "md")
    index_service.refresh_caches()
    return index_service
