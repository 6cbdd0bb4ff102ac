from __future__ import annotations

from pathlib import Path
from datetime import datetime, timezone
from typing import Iterable
import shutil


VERSION_MARKER = "version.txt"
CONTROL_ENTRIES = frozenset({".git"})


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def remove_path(p: Path) -> None:
    """Remove a file, symlink or directory tree if it exists."""
    if p.is_symlink() or p.is_file():
        p.unlink()
    elif p.is_dir():
        shutil.rmtree(p)


def clear_directory(root: Path, keep: Iterable[str] = CONTROL_ENTRIES) -> int:
    """Delete every top-level entry of ``root`` except the names in ``keep``.

    Returns the number of entries removed.
    """
    keep = set(keep)
    removed = 0
    for entry in Path(root).iterdir():
        if entry.name in keep:
            continue
        remove_path(entry)
        removed += 1
    return removed


def copy_tree(src: Path, dst: Path, skip: Iterable[str] = CONTROL_ENTRIES) -> int:
    """Copy the contents of ``src`` into ``dst``, merging with what is there.

    Top-level entries named in ``skip`` are never copied, so content can not
    smuggle its own ``.git`` into the store. Returns the number of files copied.
    """
    skip = set(skip)
    src = Path(src)
    dst = Path(dst)
    dst.mkdir(parents=True, exist_ok=True)
    copied = 0
    for entry in src.iterdir():
        if entry.name in skip:
            continue
        target = dst / entry.name
        if entry.is_dir() and not entry.is_symlink():
            shutil.copytree(entry, target, symlinks=True, dirs_exist_ok=True)
            copied += sum(1 for p in entry.rglob("*") if not p.is_dir())
        else:
            shutil.copy2(entry, target, follow_symlinks=False)
            copied += 1
    return copied


def write_version_marker(root: Path, version: str) -> Path:
    """Write the single-line version marker at the root of a snapshot."""
    marker = Path(root) / VERSION_MARKER
    marker.write_text(f"{version}\n", encoding="utf-8")
    return marker


def read_version_marker(root: Path) -> str | None:
    marker = Path(root) / VERSION_MARKER
    try:
        return marker.read_text(encoding="utf-8").strip() or None
    except FileNotFoundError:
        return None


def is_within(child: Path, parent: Path) -> bool:
    """True if ``child`` resolves to ``parent`` or a path below it."""
    child = Path(child).expanduser().resolve()
    parent = Path(parent).expanduser().resolve()
    return child == parent or parent in child.parents
