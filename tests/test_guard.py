"""Tests for qaterm.guard: directory allow-list, command block-list, .aiignore."""

import os

import pytest

from qaterm.guard import (
    DEFAULT_IGNORE_PATTERNS,
    blocked_substring,
    is_command_allowed,
    is_path_allowed,
    is_path_ignored,
    load_ignore_patterns,
)


class TestIsPathAllowed:
    def test_root_itself_allowed(self, tmp_path):
        assert is_path_allowed(tmp_path, [str(tmp_path)])

    def test_descendant_allowed(self, tmp_path):
        assert is_path_allowed(tmp_path / "a" / "b.txt", [str(tmp_path)])

    def test_sibling_rejected(self, tmp_path):
        allowed = tmp_path / "allowed"
        allowed.mkdir()
        assert not is_path_allowed(tmp_path / "other" / "x", [str(allowed)])

    def test_prefix_name_is_not_descendant(self, tmp_path):
        """/tmp/allowed-evil is not inside /tmp/allowed."""
        allowed = tmp_path / "allowed"
        allowed.mkdir()
        assert not is_path_allowed(tmp_path / "allowed-evil" / "x", [str(allowed)])

    def test_traversal_resolved_before_check(self, tmp_path):
        allowed = tmp_path / "allowed"
        allowed.mkdir()
        sneaky = str(allowed) + "/a/../../etc/passwd"
        assert not is_path_allowed(sneaky, [str(allowed)])

    def test_traversal_staying_inside(self, tmp_path):
        allowed = tmp_path / "allowed"
        (allowed / "a").mkdir(parents=True)
        assert is_path_allowed(str(allowed) + "/a/../b.txt", [str(allowed)])

    def test_symlink_escape_rejected(self, tmp_path):
        allowed = tmp_path / "allowed"
        outside = tmp_path / "outside"
        allowed.mkdir()
        outside.mkdir()
        link = allowed / "link"
        try:
            os.symlink(outside, link)
        except OSError:
            pytest.skip("symlinks not supported")
        assert not is_path_allowed(link / "secret.txt", [str(allowed)])

    def test_any_of_several_roots(self, tmp_path):
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.mkdir()
        b.mkdir()
        assert is_path_allowed(b / "f", [str(a), str(b)])

    def test_empty_allow_list_allows_nothing(self, tmp_path):
        assert not is_path_allowed(tmp_path, [])


class TestCommandBlockList:
    BLOCKED = ["rm -rf", "sudo", "> /dev"]

    def test_plain_command_allowed(self):
        assert is_command_allowed("ls -la", self.BLOCKED)

    def test_substring_blocked(self):
        assert not is_command_allowed("rm -rf /", self.BLOCKED)

    def test_case_insensitive(self):
        assert not is_command_allowed("SUDO reboot", self.BLOCKED)
        assert not is_command_allowed("Rm -Rf build", self.BLOCKED)

    def test_blocked_anywhere_in_line(self):
        assert not is_command_allowed("echo hi > /dev/sda", self.BLOCKED)

    def test_equivalent_spelling_not_caught(self):
        """The block-list is a substring test; rewordings slip through."""
        assert is_command_allowed("rm -r -f build", self.BLOCKED)

    def test_blocked_substring_reports_entry(self):
        assert blocked_substring("sudo ls", self.BLOCKED) == "sudo"
        assert blocked_substring("ls", self.BLOCKED) is None

    def test_empty_block_list(self):
        assert is_command_allowed("rm -rf /", [])


class TestIgnorePatterns:
    def test_defaults_without_file(self, tmp_path):
        assert load_ignore_patterns(tmp_path) == list(DEFAULT_IGNORE_PATTERNS)

    def test_file_patterns_appended(self, tmp_path):
        (tmp_path / ".aiignore").write_text(
            "# private stuff\n\nnotes/\n*.sqlite\n.env\n", encoding="utf-8"
        )
        patterns = load_ignore_patterns(tmp_path)
        assert patterns[: len(DEFAULT_IGNORE_PATTERNS)] == list(DEFAULT_IGNORE_PATTERNS)
        assert "notes/" in patterns
        assert "*.sqlite" in patterns
        assert "# private stuff" not in patterns
        assert patterns.count(".env") == 1

    def test_exact_match(self, tmp_path):
        assert is_path_ignored(tmp_path / ".env", [".env"], tmp_path)

    def test_basename_match_in_subdir(self, tmp_path):
        assert is_path_ignored(tmp_path / "conf" / "secrets.json", ["secrets.json"], tmp_path)

    def test_directory_pattern(self, tmp_path):
        assert is_path_ignored(tmp_path / ".git" / "config", [".git/"], tmp_path)
        assert is_path_ignored(tmp_path / ".git", [".git/"], tmp_path)

    def test_nested_directory_pattern(self, tmp_path):
        path = tmp_path / "web" / "node_modules" / "left-pad" / "index.js"
        assert is_path_ignored(path, ["node_modules/"], tmp_path)

    def test_glob(self, tmp_path):
        assert is_path_ignored(tmp_path / "server.pem", ["*.pem"], tmp_path)
        assert is_path_ignored(tmp_path / ".env.local", [".env.*"], tmp_path)
        assert not is_path_ignored(tmp_path / "server.pem.txt", ["*.pem"], tmp_path)

    def test_regular_file_not_ignored(self, tmp_path):
        patterns = list(DEFAULT_IGNORE_PATTERNS)
        assert not is_path_ignored(tmp_path / "src" / "main.py", patterns, tmp_path)

    def test_base_itself_not_ignored(self, tmp_path):
        assert not is_path_ignored(tmp_path, ["*"], tmp_path)

    def test_outside_base_matches_basename(self, tmp_path):
        base = tmp_path / "project"
        base.mkdir()
        assert is_path_ignored(tmp_path / "elsewhere" / "id.key", ["*.key"], base)
        assert not is_path_ignored(tmp_path / "elsewhere" / "a.txt", ["*.key"], base)
