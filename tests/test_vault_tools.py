"""Tests for the vault file tools against a real directory."""

import pytest

from scribe_agent.tools.vault_tools import (
    CreateFolderTool,
    DeleteFileTool,
    ListFilesTool,
    MoveFileTool,
    ReadFileTool,
    SearchFilesTool,
    WriteFileTool,
)
from scribe_agent.vault.storage import LocalVaultStorage, normalize_path


@pytest.fixture
def vault(tmp_path):
    (tmp_path / "Projects").mkdir()
    (tmp_path / "Projects" / "Plan.md").write_text("# Plan\n\nShip it", encoding="utf-8")
    (tmp_path / "Welcome.md").write_text("Hello vault", encoding="utf-8")
    (tmp_path / ".obsidian").mkdir()
    (tmp_path / ".obsidian" / "app.json").write_text("{}", encoding="utf-8")
    return LocalVaultStorage(tmp_path)


class TestPaths:
    def test_normalize(self):
        assert normalize_path("/Projects/./Plan.md") == "Projects/Plan.md"
        assert normalize_path("Projects\\Plan.md") == "Projects/Plan.md"
        assert normalize_path("") == ""

    def test_parent_segments_rejected(self):
        with pytest.raises(ValueError):
            normalize_path("../outside.md")


class TestReadFile:
    @pytest.mark.asyncio
    async def test_reads_with_optional_extension(self, vault, context):
        result = await ReadFileTool(vault).execute({"path": "Projects/Plan"}, context)

        assert result.success
        assert result.data["path"] == "Projects/Plan.md"
        assert result.data["content"].startswith("# Plan")

    @pytest.mark.asyncio
    async def test_missing_file_suggests_matches(self, vault, context):
        result = await ReadFileTool(vault).execute({"path": "Archive/Plan.md"}, context)

        assert not result.success
        assert result.error.startswith("File not found: Archive/Plan.md")
        assert "Projects/Plan.md" in result.error

    @pytest.mark.asyncio
    async def test_system_folder_is_off_limits(self, vault, context):
        result = await ReadFileTool(vault).execute({"path": ".obsidian/app.json"}, context)
        assert result.error == "Cannot read from system folder: .obsidian/app.json"

    @pytest.mark.asyncio
    async def test_escaping_path_fails_cleanly(self, vault, context):
        result = await ReadFileTool(vault).execute({"path": "../etc/passwd"}, context)
        assert result.error.startswith("Error reading file:")


class TestWriteFile:
    @pytest.mark.asyncio
    async def test_create_then_modify(self, vault, context, tmp_path):
        tool = WriteFileTool(vault)

        created = await tool.execute({"path": "Inbox/new.md", "content": "one"}, context)
        modified = await tool.execute({"path": "Inbox/new.md", "content": "two"}, context)

        assert created.data["action"] == "created"
        assert modified.data["action"] == "modified"
        assert (tmp_path / "Inbox" / "new.md").read_text(encoding="utf-8") == "two"

    def test_confirmation_message_previews_content(self, vault):
        message = WriteFileTool(vault).confirmation_message({"path": "a.md", "content": "x" * 300})
        assert message.startswith("Write content to file: a.md")
        assert message.endswith("x" * 200 + "...")


class TestListAndSearch:
    @pytest.mark.asyncio
    async def test_list_root_skips_system_folders(self, vault, context):
        result = await ListFilesTool(vault).execute({"path": ""}, context)

        paths = [entry["path"] for entry in result.data["files"]]
        assert paths == ["Projects", "Welcome.md"]

    @pytest.mark.asyncio
    async def test_list_recursive(self, vault, context):
        result = await ListFilesTool(vault).execute({"path": "", "recursive": True}, context)

        assert "Projects/Plan.md" in [entry["path"] for entry in result.data["files"]]
        assert result.data["count"] == 3

    @pytest.mark.asyncio
    async def test_list_missing_folder(self, vault, context):
        result = await ListFilesTool(vault).execute({"path": "Nope"}, context)
        assert result.error == "Folder not found: Nope"

    @pytest.mark.asyncio
    async def test_search_with_wildcards(self, vault, context):
        result = await SearchFilesTool(vault).execute({"pattern": "*.md"}, context)

        assert {match["path"] for match in result.data["matches"]} == {"Projects/Plan.md", "Welcome.md"}

    @pytest.mark.asyncio
    async def test_search_substring_and_limit(self, vault, context):
        result = await SearchFilesTool(vault).execute({"pattern": "md", "limit": 1}, context)

        assert result.data["count"] == 1
        assert result.data["truncated"] is True


class TestFolderMoveDelete:
    @pytest.mark.asyncio
    async def test_create_folder(self, vault, context, tmp_path):
        tool = CreateFolderTool(vault)

        first = await tool.execute({"path": "Archive/2024"}, context)
        second = await tool.execute({"path": "Archive/2024"}, context)

        assert first.success
        assert (tmp_path / "Archive" / "2024").is_dir()
        assert second.error == "Path already exists: Archive/2024"

    @pytest.mark.asyncio
    async def test_move_file(self, vault, context, tmp_path):
        result = await MoveFileTool(vault).execute(
            {"sourcePath": "Welcome", "targetPath": "Archive/Welcome.md"}, context
        )

        assert result.data == {
            "sourcePath": "Welcome.md",
            "targetPath": "Archive/Welcome.md",
            "action": "moved",
        }
        assert (tmp_path / "Archive" / "Welcome.md").exists()
        assert not (tmp_path / "Welcome.md").exists()

    @pytest.mark.asyncio
    async def test_move_refuses_to_overwrite(self, vault, context):
        result = await MoveFileTool(vault).execute(
            {"sourcePath": "Welcome.md", "targetPath": "Projects/Plan.md"}, context
        )
        assert result.error == "Target path already exists: Projects/Plan.md"

    @pytest.mark.asyncio
    async def test_delete_file_and_folder(self, vault, context, tmp_path):
        tool = DeleteFileTool(vault)

        file_result = await tool.execute({"path": "Welcome"}, context)
        folder_result = await tool.execute({"path": "Projects"}, context)

        assert file_result.data["type"] == "file"
        assert folder_result.data["type"] == "folder"
        assert not (tmp_path / "Projects").exists()

    @pytest.mark.asyncio
    async def test_delete_guards(self, vault, context):
        tool = DeleteFileTool(vault)

        assert (await tool.execute({"path": ""}, context)).error == "Cannot delete the vault root"
        assert (await tool.execute({"path": ".git"}, context)).error == "Cannot delete system folder: .git"
        assert (await tool.execute({"path": "ghost.md"}, context)).error == "File or folder not found: ghost.md"


class TestSearchLimit:
    @pytest.mark.asyncio
    async def test_negative_limit_is_clamped_to_one(self, vault, context):
        result = await SearchFilesTool(vault).execute({"pattern": "md", "limit": -2}, context)

        assert result.data["count"] == 1
        assert len(result.data["matches"]) == 1
        assert result.data["truncated"] is True
