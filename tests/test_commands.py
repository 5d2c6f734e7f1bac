"""Tests for qaterm.commands: agent token scanning and fs payload parsing."""

import os

from qaterm.commands import (
    FileOperation,
    ShellOperation,
    extract_operations,
    find_pending_token,
    has_operations,
    parse_fs_payload,
    rebase_path,
)


class TestAgentTokens:
    def test_exec_token(self):
        text = "Sure: {{agent:exec:ls -la}} done"
        [op] = extract_operations(text)
        assert isinstance(op, ShellOperation)
        assert op.kind == "shell"
        assert op.command_line == "ls -la"
        assert op.raw_spec == "ls -la"
        assert op.matched_span == "{{agent:exec:ls -la}}"
        assert text[op.start : op.end] == op.matched_span

    def test_fs_token(self):
        [op] = extract_operations("{{agent:fs:read:/tmp/x.txt}}")
        assert isinstance(op, FileOperation)
        assert op.kind == "filesystem"
        assert op.action == "read"
        assert op.path == "/tmp/x.txt"
        assert op.content is None
        assert op.raw_spec == "read:/tmp/x.txt"

    def test_fs_content_keeps_colons(self):
        [op] = extract_operations("{{agent:fs:write:/tmp/a.txt:key: value: 1}}")
        assert op.path == "/tmp/a.txt"
        assert op.content == "key: value: 1"

    def test_order_of_appearance(self):
        text = (
            "{{agent:fs:write:/tmp/a:hi}} then {{agent:exec:cat /tmp/a}} "
            "and {{agent:fs:read:/tmp/a}}"
        )
        ops = extract_operations(text)
        assert [o.kind for o in ops] == ["filesystem", "shell", "filesystem"]
        assert [o.start for o in ops] == sorted(o.start for o in ops)

    def test_payload_ends_at_first_close(self):
        [op] = extract_operations("{{agent:exec:echo a}} b}}")
        assert op.command_line == "echo a"

    def test_newline_in_payload_is_not_a_token(self):
        assert extract_operations("{{agent:exec:echo\nhi}}") == []

    def test_empty_payload_is_not_a_token(self):
        assert extract_operations("{{agent:exec:}}") == []

    def test_unknown_type_ignored(self):
        assert extract_operations("{{agent:net:get:http://x}}") == []

    def test_unterminated_token_ignored(self):
        assert extract_operations("{{agent:exec:ls -la") == []

    def test_fs_without_path_is_skipped(self):
        assert extract_operations("{{agent:fs:list}}") == []

    def test_malformed_then_valid(self):
        text = "{{agent:exec:\n}} {{agent:exec:pwd}}"
        [op] = extract_operations(text)
        assert op.command_line == "pwd"

    def test_plain_text(self):
        assert extract_operations("Nothing to do here.") == []
        assert not has_operations("Nothing to do here.")

    def test_idempotent(self):
        text = "{{agent:exec:ls}} (Executed: read:/x) {{agent:fs:list:/tmp}}"
        assert extract_operations(text) == extract_operations(text)


class TestEchoedTokens:
    def test_colon_means_filesystem(self):
        [op] = extract_operations("(Executed: read:/tmp/x)")
        assert isinstance(op, FileOperation)
        assert op.action == "read"
        assert op.matched_span == "(Executed: read:/tmp/x)"

    def test_plain_command_means_shell(self):
        [op] = extract_operations("(Executed: ls -la)")
        assert isinstance(op, ShellOperation)
        assert op.command_line == "ls -la"

    def test_file_verbs_without_path_are_skipped(self):
        assert extract_operations("(Executed: mkdir build)") == []

    def test_payload_ends_at_first_paren(self):
        [op] = extract_operations("(Executed: ls (x))")
        assert op.command_line == "ls (x"

    def test_not_executed_marker_is_plain_text(self):
        assert extract_operations("(Command not executed: ls)") == []

    def test_has_operations(self):
        assert has_operations("(Executed: ls)")
        assert has_operations("{{agent:fs:list}}")


class TestParseFsPayload:
    def test_action_and_path(self):
        assert parse_fs_payload("list:/tmp") == ("list", "/tmp", None)

    def test_whitespace_stripped(self):
        assert parse_fs_payload(" write : /a.txt : text ") == ("write", "/a.txt", "text")

    def test_missing_path(self):
        assert parse_fs_payload("read") is None
        assert parse_fs_payload("read:  ") is None


class TestRebasePath:
    def test_inside_root_unchanged(self, tmp_path):
        inside = str(tmp_path / "docs" / "a.txt")
        assert rebase_path(inside, tmp_path) == inside

    def test_absolute_outside_moved_under_root(self, tmp_path):
        assert rebase_path("/etc/hosts", tmp_path) == os.path.join(
            str(tmp_path), "etc", "hosts"
        )

    def test_relative_joined(self, tmp_path):
        assert rebase_path("notes/a.md", tmp_path) == os.path.join(
            str(tmp_path), "notes", "a.md"
        )

    def test_extract_rebases_fs_paths(self, tmp_path):
        [op] = extract_operations("{{agent:fs:read:/etc/hosts}}", tmp_path)
        assert op.path == os.path.join(str(tmp_path), "etc", "hosts")
        assert op.raw_spec == "read:/etc/hosts"

    def test_shell_not_rebased(self, tmp_path):
        [op] = extract_operations("{{agent:exec:cat /etc/hosts}}", tmp_path)
        assert op.command_line == "cat /etc/hosts"


class TestFindPendingToken:
    def test_first_raw_token(self):
        text = "(Executed: ls) then {{agent:exec:pwd}} and {{agent:exec:whoami}}"
        op = find_pending_token(text)
        assert op.command_line == "pwd"

    def test_echoed_only(self):
        assert find_pending_token("(Executed: ls -la)") is None

    def test_none(self):
        assert find_pending_token("hello") is None
