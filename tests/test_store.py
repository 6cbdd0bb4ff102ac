from __future__ import annotations

import pytest
from git import Repo

from snapline.errors import StoreError
from snapline_git.store import CommitGraphStore


def _commit_files(store: CommitGraphStore, files: dict[str, str], parents=()) -> str:
    for name, text in files.items():
        path = store.working_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
    store.stage_all()
    return store.commit_index("test", parents=list(parents))


def test_open_or_init_creates_repository(tmp_path):
    store = CommitGraphStore.open_or_init(tmp_path / "new" / "store")
    assert (tmp_path / "new" / "store" / ".git").is_dir()
    assert store.head_commit() is None
    assert store.local_branches() == {}
    assert store.has_remote() is False


def test_open_existing_and_missing(tmp_path):
    CommitGraphStore.open_or_init(tmp_path / "s")
    assert CommitGraphStore.open(tmp_path / "s").working_dir == tmp_path / "s"
    with pytest.raises(StoreError, match="Not a git repository"):
        CommitGraphStore.open(tmp_path / "nothing")


def test_open_or_init_adds_remote_once(tmp_path, bare_remote):
    store = CommitGraphStore.open_or_init(tmp_path / "s", remote_url=bare_remote.as_posix())
    again = CommitGraphStore.open_or_init(tmp_path / "s", remote_url="https://example.invalid/x.git")
    assert store.has_remote()
    assert again.remote_url() == bare_remote.as_posix()


def test_commit_index_sets_exact_parents_and_identity(store):
    root = _commit_files(store, {"a.txt": "1"})
    child = _commit_files(store, {"a.txt": "2"}, parents=[root])
    assert store.parents_of(root) == []
    assert store.parents_of(child) == [root]
    commit = store.repo.commit(child)
    assert commit.author.name == "snapline"
    assert commit.committer.email == "snapline@localhost"
    # HEAD is not moved by commit_index
    assert store.head_commit() is None


def test_stage_all_includes_ignored_files_and_deletions(store):
    sha = _commit_files(store, {".gitignore": "*.log\n", "keep.log": "x", "gone.txt": "y"})
    assert "keep.log" in store.list_files(sha)
    (store.working_dir / "gone.txt").unlink()
    store.stage_all()
    second = store.commit_index("drop", parents=[sha])
    assert "gone.txt" not in store.list_files(second)


def test_branches_set_delete_and_checkout(store):
    sha = _commit_files(store, {"a.txt": "1"})
    store.set_branch("version/1.0.0", sha)
    store.set_branch("feature", sha)
    assert store.local_branches("version/") == {"version/1.0.0": sha}
    store.checkout("version/1.0.0")
    assert store.current_branch() == "version/1.0.0"

    other = _commit_files(store, {"a.txt": "2"}, parents=[sha])
    store.set_branch("version/1.0.0", other)
    assert store.branch_commit("version/1.0.0") == other

    assert store.delete_branch("version/1.0.0") is True
    assert store.delete_branch("version/1.0.0") is False
    assert store.branch_commit("version/1.0.0") is None


def test_delete_checked_out_branch_switches_to_main(store):
    sha = _commit_files(store, {"a.txt": "1"})
    store.set_branch("main", sha)
    store.set_branch("version/1.0.0", sha)
    store.checkout("version/1.0.0")
    store.delete_branch("version/1.0.0")
    assert store.current_branch() == "main"


def test_checkout_clean_removes_untracked_and_ignored(store):
    sha = _commit_files(store, {".gitignore": "ignored/\n", "a.txt": "1"})
    store.set_branch("main", sha)
    store.checkout("main")
    (store.working_dir / "stray.txt").write_text("x")
    (store.working_dir / "ignored").mkdir()
    (store.working_dir / "ignored" / "f").write_text("x")
    store.checkout("main", clean=True)
    assert not (store.working_dir / "stray.txt").exists()
    assert not (store.working_dir / "ignored").exists()


def test_read_file(store):
    sha = _commit_files(store, {"versions.json": '{"versions": []}', "sub/x.txt": "x"})
    store.set_branch("main", sha)
    assert store.read_file("main", "versions.json") == b'{"versions": []}'
    assert store.read_file("main", "sub/x.txt") == b"x"
    assert store.read_file("main", "missing.json") is None
    assert store.read_file("no-such-branch", "versions.json") is None


def test_remote_branches_after_fetch(tmp_path, bare_remote):
    seed = Repo.init(tmp_path / "seed")
    (tmp_path / "seed" / "f").write_text("1")
    seed.index.add(["f"])
    sha = seed.index.commit("seed").hexsha
    seed.create_remote("origin", bare_remote.as_posix())
    seed.git.push("origin", f"{sha}:refs/heads/version/1.0.0")

    store = CommitGraphStore.open_or_init(tmp_path / "s", remote_url=bare_remote.as_posix())
    assert store.remote_branches("version/") == {}
    store.repo.git.fetch("origin")
    assert store.remote_branches("version/") == {"version/1.0.0": sha}
    assert store.is_ancestor(sha, sha)
