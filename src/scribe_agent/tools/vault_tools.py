from __future__ import annotations

import asyncio
import re
from typing import Any, Mapping

from ..vault.storage import VaultStorage, is_excluded, normalize_path
from .base import ToolCategory, ToolExecutionContext, ToolResult

MAX_SUGGESTIONS = 5
DEFAULT_SEARCH_LIMIT = 50


def _preview(content: str, length: int = 200) -> str:
    return content[:length] + ("..." if len(content) > length else "")


def _wildcard_regex(pattern: str) -> re.Pattern[str]:
    if "*" not in pattern and "?" not in pattern:
        return re.compile(re.escape(pattern), re.IGNORECASE)

    body = re.escape(pattern).replace(r"\*", ".*").replace(r"\?", ".")
    if not pattern.startswith(("*", "?")):
        body = f"^{body}"
    if not pattern.endswith(("*", "?")):
        body = f"{body}$"
    return re.compile(body, re.IGNORECASE)


class _VaultTool:
    def __init__(self, storage: VaultStorage) -> None:
        self.storage = storage

    async def execute(self, args: Mapping[str, Any], context: ToolExecutionContext) -> ToolResult:
        # storage calls block, keep them off the event loop
        return await asyncio.to_thread(self.run, args)

    def run(self, args: Mapping[str, Any]) -> ToolResult:
        raise NotImplementedError

    def _resolve_file(self, path: str) -> str | None:
        normalized = normalize_path(path)
        candidates = [normalized]
        if not normalized.endswith(".md"):
            candidates.append(f"{normalized}.md")
        for candidate in candidates:
            if self.storage.exists(candidate) and not self.storage.is_dir(candidate):
                return candidate
        return None

    def _suggestions(self, path: str) -> list[str]:
        stem = normalize_path(path).rsplit("/", 1)[-1].removesuffix(".md").lower()
        if not stem:
            return []
        return [
            entry.path for entry in self.storage.iter_files() if stem in entry.name.lower()
        ][:MAX_SUGGESTIONS]


class ReadFileTool(_VaultTool):
    name = "read_file"
    display_name = "Read File"
    category = ToolCategory.READ_ONLY
    description = (
        "Read the full text contents of a file from the vault. Path is relative to the "
        "vault root; the .md extension is optional."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the file relative to the vault root"},
        },
        "required": ["path"],
    }

    def run(self, args: Mapping[str, Any]) -> ToolResult:
        path = str(args["path"])
        try:
            if is_excluded(path):
                return ToolResult.fail(f"Cannot read from system folder: {path}")
            if self.storage.is_dir(path):
                return ToolResult.fail(f"Path is not a file: {path}")

            resolved = self._resolve_file(path)
            if resolved is None:
                suggestions = self._suggestions(path)
                hint = ""
                if suggestions:
                    hint = "\n\nDid you mean one of these?\n" + "\n".join(suggestions)
                return ToolResult.fail(f"File not found: {path}{hint}")

            content = self.storage.read_text(resolved)
        except (OSError, ValueError) as exc:
            return ToolResult.fail(f"Error reading file: {exc}")

        return ToolResult.ok({"path": resolved, "content": content, "size": len(content)})


class WriteFileTool(_VaultTool):
    name = "write_file"
    display_name = "Write File"
    category = ToolCategory.VAULT_OPERATIONS
    description = (
        "Write text content to a file in the vault. Creates the file if it does not exist, "
        "otherwise overwrites it completely."
    )
    requires_confirmation = True
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the file to write"},
            "content": {"type": "string", "description": "Content to write to the file"},
        },
        "required": ["path", "content"],
    }

    def confirmation_message(self, args: Mapping[str, Any]) -> str:
        content = str(args.get("content", ""))
        return f"Write content to file: {args.get('path')}\n\nContent preview:\n{_preview(content)}"

    def run(self, args: Mapping[str, Any]) -> ToolResult:
        path = str(args["path"])
        content = str(args["content"])
        try:
            if is_excluded(path):
                return ToolResult.fail(f"Cannot write to system folder: {path}")
            normalized = normalize_path(path)
            created = self.storage.write_text(normalized, content)
        except (OSError, ValueError) as exc:
            return ToolResult.fail(f"Error writing file: {exc}")

        return ToolResult.ok(
            {
                "path": normalized,
                "action": "created" if created else "modified",
                "size": len(content),
            }
        )


class ListFilesTool(_VaultTool):
    name = "list_files"
    display_name = "List Files"
    category = ToolCategory.READ_ONLY
    description = (
        "List files and folders in a vault directory. Use an empty path for the vault root. "
        "Set recursive to include every subdirectory."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Folder path relative to the vault root"},
            "recursive": {"type": "boolean", "description": "List all nested files and folders"},
        },
        "required": ["path"],
    }

    def run(self, args: Mapping[str, Any]) -> ToolResult:
        path = str(args.get("path") or "")
        recursive = bool(args.get("recursive", False))
        try:
            if path and is_excluded(path):
                return ToolResult.fail(f"Cannot list system folder: {path}")
            if path and not self.storage.exists(path):
                return ToolResult.fail(f"Folder not found: {path}")
            entries = self.storage.list_dir(path, recursive=recursive)
        except (OSError, ValueError) as exc:
            return ToolResult.fail(f"Error listing files: {exc}")

        return ToolResult.ok(
            {
                "path": normalize_path(path),
                "files": [entry.to_dict() for entry in entries],
                "count": len(entries),
            }
        )


class SearchFilesTool(_VaultTool):
    name = "search_files"
    display_name = "Search Files"
    category = ToolCategory.READ_ONLY
    description = (
        "Search vault files by name or path. Supports * and ? wildcards, case-insensitive. "
        "Searches file names only, not contents."
    )
    parameters = {
        "type": "object",
        "properties": {
            "pattern": {"type": "string", "description": "Search pattern, wildcards allowed"},
            "limit": {"type": "number", "description": "Maximum number of results to return"},
        },
        "required": ["pattern"],
    }

    def run(self, args: Mapping[str, Any]) -> ToolResult:
        pattern = str(args["pattern"])
        limit = max(1, int(args.get("limit") or DEFAULT_SEARCH_LIMIT))
        regex = _wildcard_regex(pattern)

        matches = [
            entry
            for entry in self.storage.iter_files()
            if regex.search(entry.name) or regex.search(entry.path)
        ]
        return ToolResult.ok(
            {
                "pattern": pattern,
                "matches": [entry.to_dict() for entry in matches[:limit]],
                "count": min(len(matches), limit),
                "truncated": len(matches) > limit,
            }
        )


class CreateFolderTool(_VaultTool):
    name = "create_folder"
    display_name = "Create Folder"
    category = ToolCategory.VAULT_OPERATIONS
    description = "Create a new folder in the vault. Missing parent folders are created too."
    requires_confirmation = True
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path of the folder to create"},
        },
        "required": ["path"],
    }

    def confirmation_message(self, args: Mapping[str, Any]) -> str:
        return f"Create folder: {args.get('path')}"

    def run(self, args: Mapping[str, Any]) -> ToolResult:
        path = str(args["path"])
        try:
            if is_excluded(path):
                return ToolResult.fail(f"Cannot create folder in system directory: {path}")
            normalized = normalize_path(path)
            if self.storage.exists(normalized):
                return ToolResult.fail(f"Path already exists: {path}")
            self.storage.make_dir(normalized)
        except (OSError, ValueError) as exc:
            return ToolResult.fail(f"Error creating folder: {exc}")

        return ToolResult.ok({"path": normalized, "action": "created"})


class MoveFileTool(_VaultTool):
    name = "move_file"
    display_name = "Move File"
    category = ToolCategory.VAULT_OPERATIONS
    description = "Move or rename a file in the vault."
    requires_confirmation = True
    parameters = {
        "type": "object",
        "properties": {
            "sourcePath": {"type": "string", "description": "Current path of the file"},
            "targetPath": {"type": "string", "description": "New path for the file"},
        },
        "required": ["sourcePath", "targetPath"],
    }

    def confirmation_message(self, args: Mapping[str, Any]) -> str:
        return f"Move file from: {args.get('sourcePath')}\nTo: {args.get('targetPath')}"

    def run(self, args: Mapping[str, Any]) -> ToolResult:
        source = str(args["sourcePath"])
        target = str(args["targetPath"])
        try:
            if is_excluded(source) or is_excluded(target):
                return ToolResult.fail("Cannot move files into or out of system folders")
            resolved = self._resolve_file(source)
            if resolved is None:
                return ToolResult.fail(f"Source file not found: {source}")
            normalized_target = normalize_path(target)
            if self.storage.exists(normalized_target):
                return ToolResult.fail(f"Target path already exists: {target}")
            self.storage.move(resolved, normalized_target)
        except (OSError, ValueError) as exc:
            return ToolResult.fail(f"Error moving file: {exc}")

        return ToolResult.ok(
            {"sourcePath": resolved, "targetPath": normalized_target, "action": "moved"}
        )


class DeleteFileTool(_VaultTool):
    name = "delete_file"
    display_name = "Delete File"
    category = ToolCategory.VAULT_OPERATIONS
    description = (
        "Permanently delete a file or folder from the vault. Folders are removed "
        "recursively. This cannot be undone."
    )
    requires_confirmation = True
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path of the file or folder to delete"},
        },
        "required": ["path"],
    }

    def confirmation_message(self, args: Mapping[str, Any]) -> str:
        return f"Delete file or folder: {args.get('path')}\n\nThis action cannot be undone."

    def run(self, args: Mapping[str, Any]) -> ToolResult:
        path = str(args["path"])
        try:
            if is_excluded(path):
                return ToolResult.fail(f"Cannot delete system folder: {path}")
            if not normalize_path(path):
                return ToolResult.fail("Cannot delete the vault root")
            target = normalize_path(path) if self.storage.is_dir(path) else self._resolve_file(path)
            if not target:
                return ToolResult.fail(f"File or folder not found: {path}")
            kind = self.storage.delete(target)
        except (OSError, ValueError) as exc:
            return ToolResult.fail(f"Error deleting file: {exc}")

        return ToolResult.ok({"path": target, "type": kind, "action": "deleted"})


def vault_tools(storage: VaultStorage) -> list[_VaultTool]:
    return [
        ReadFileTool(storage),
        WriteFileTool(storage),
        ListFilesTool(storage),
        SearchFilesTool(storage),
        CreateFolderTool(storage),
        MoveFileTool(storage),
        DeleteFileTool(storage),
    ]
