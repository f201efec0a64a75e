from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Protocol

EXCLUDED_FOLDERS = (".obsidian", ".git", ".trash")


@dataclass(frozen=True)
class VaultEntry:
    name: str
    path: str
    type: str
    size: int = 0
    modified: float = 0.0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": self.path,
            "type": self.type,
            "size": self.size,
            "modified": self.modified,
        }


def normalize_path(path: str) -> str:
    """Vault-relative POSIX path without leading slash or ``.`` segments.

    Raises ``ValueError`` for paths that climb out of the vault.
    """
    raw = (path or "").strip().replace("\\", "/")
    parts: list[str] = []
    for part in PurePosixPath(raw).parts:
        if part in {"/", "."}:
            continue
        if part == "..":
            raise ValueError(f"Path escapes the vault: {path}")
        parts.append(part)
    return "/".join(parts)


def is_excluded(path: str) -> bool:
    first = normalize_path(path).split("/", 1)[0]
    return first in EXCLUDED_FOLDERS


class VaultStorage(Protocol):
    def exists(self, path: str) -> bool: ...

    def is_dir(self, path: str) -> bool: ...

    def read_text(self, path: str) -> str: ...

    def write_text(self, path: str, content: str) -> bool:
        """Write ``content``; return True when the file was created."""
        ...

    def append_text(self, path: str, content: str) -> None: ...

    def list_dir(self, path: str, recursive: bool = False) -> list[VaultEntry]: ...

    def iter_files(self) -> list[VaultEntry]: ...

    def make_dir(self, path: str) -> None: ...

    def move(self, source: str, target: str) -> None: ...

    def delete(self, path: str) -> str:
        """Delete a file or folder; return ``"file"`` or ``"folder"``."""
        ...


class LocalVaultStorage:
    """Vault backed by a directory on disk."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        return self.root / normalize_path(path)

    def _entry(self, target: Path) -> VaultEntry:
        stat = target.stat()
        return VaultEntry(
            name=target.name,
            path=target.relative_to(self.root).as_posix(),
            type="folder" if target.is_dir() else "file",
            size=0 if target.is_dir() else stat.st_size,
            modified=stat.st_mtime,
        )

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def is_dir(self, path: str) -> bool:
        return self._resolve(path).is_dir()

    def read_text(self, path: str) -> str:
        return self._resolve(path).read_text(encoding="utf-8")

    def write_text(self, path: str, content: str) -> bool:
        target = self._resolve(path)
        created = not target.exists()
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        return created

    def append_text(self, path: str, content: str) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("a", encoding="utf-8") as handle:
            handle.write(content)

    def list_dir(self, path: str, recursive: bool = False) -> list[VaultEntry]:
        folder = self._resolve(path)
        if not folder.is_dir():
            raise NotADirectoryError(f"Not a folder: {path or '/'}")
        children = folder.rglob("*") if recursive else folder.iterdir()
        return sorted(
            (
                self._entry(child)
                for child in children
                if not is_excluded(child.relative_to(self.root).as_posix())
            ),
            key=lambda entry: entry.path,
        )

    def iter_files(self) -> list[VaultEntry]:
        return [entry for entry in self.list_dir("", recursive=True) if entry.type == "file"]

    def make_dir(self, path: str) -> None:
        self._resolve(path).mkdir(parents=True, exist_ok=False)

    def move(self, source: str, target: str) -> None:
        destination = self._resolve(target)
        if destination.exists():
            raise FileExistsError(f"Target already exists: {target}")
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(self._resolve(source)), str(destination))

    def delete(self, path: str) -> str:
        target = self._resolve(path)
        if target.is_dir():
            shutil.rmtree(target)
            return "folder"
        target.unlink()
        return "file"
