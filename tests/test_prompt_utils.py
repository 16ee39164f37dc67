"""Tests for prompt classification helpers."""

from devark.core import Message
from devark.prompt_utils import (
    count_actual_user_prompts,
    detect_slash_command,
    generate_prompt_id,
    is_actual_user_prompt,
    is_slash_command_only,
    normalize_prompt_text,
    prompt_fingerprint,
    truncate,
)


class TestIsActualUserPrompt:
    def test_plain_text(self):
        assert is_actual_user_prompt("Fix the login bug") is True

    def test_empty_and_whitespace(self):
        assert is_actual_user_prompt("") is False
        assert is_actual_user_prompt("   \n\t") is False
        assert is_actual_user_prompt(None) is False

    def test_tool_markers(self):
        assert is_actual_user_prompt("[Tool result] file written") is False
        assert is_actual_user_prompt("[Tool: Bash] ls") is False

    def test_bare_tool_bracket(self):
        assert is_actual_user_prompt("[Tool output]") is False

    def test_tool_bracket_followed_by_text(self):
        assert is_actual_user_prompt("[Tool output] and then please explain this") is True


class TestSlashCommands:
    def test_command_without_arguments(self):
        command = detect_slash_command("/clear")
        assert command.name == "clear"
        assert command.arguments is None
        assert is_slash_command_only("/clear") is True

    def test_command_with_arguments(self):
        command = detect_slash_command("/review  the auth module ")
        assert command.name == "review"
        assert command.arguments == "the auth module"
        assert is_slash_command_only("/review the auth module") is False

    def test_namespaced_command(self):
        assert detect_slash_command("/project:deploy staging").name == "project:deploy"

    def test_not_a_command(self):
        assert detect_slash_command("/usr/bin is a path") is None
        assert detect_slash_command("please run /clear") is None
        assert detect_slash_command("") is None


class TestNormalization:
    def test_collapses_whitespace(self):
        assert normalize_prompt_text("  fix   the\n\nbug  ") == "fix the bug"

    def test_fingerprint_ignores_whitespace(self):
        assert prompt_fingerprint("fix  the bug") == prompt_fingerprint(" fix the\tbug ")
        assert prompt_fingerprint("fix the bug") != prompt_fingerprint("fix the bugs")

    def test_truncate(self):
        assert truncate("short", 10) == "short"
        assert truncate("a" * 20, 10) == "aaaaaaa..."
        assert len(truncate("a" * 20, 10)) == 10


def test_generate_prompt_id_is_unique_and_prefixed():
    first, second = generate_prompt_id("cursor"), generate_prompt_id("cursor")
    assert first.startswith("cursor-")
    assert first != second


def test_count_actual_user_prompts():
    messages = [
        Message(id="1", role="user", content="Write a test"),
        Message(id="2", role="assistant", content="Done"),
        Message(id="3", role="user", content="[Tool result] ok"),
        Message(id="4", role="user", content="Now refactor it"),
    ]
    assert count_actual_user_prompts(messages) == 2
