"""
Tests for the real command executor (runs /bin/sh).
"""

import pytest

from recipkg_errors import ExternalToolError
from recipkg_exec import CommandExecutor, render


class TestCommandExecutor:
    def test_shell_string(self, tmp_path):
        res = CommandExecutor().run("echo hello; echo oops >&2", cwd=tmp_path)
        assert res.ok
        assert res.stdout.strip() == "hello"
        assert res.stderr.strip() == "oops"

    def test_list_and_env(self):
        res = CommandExecutor(env={"PATH": "/usr/bin:/bin"}).run(["sh", "-c", 'echo "$GREETING"; exit 3'], env={"GREETING": "hi"})
        assert res.rc == 3
        assert res.stdout.strip() == "hi"

    def test_missing_binary_is_127(self):
        res = CommandExecutor().run(["definitely-not-a-real-tool-xyz"])
        assert res.rc == 127

    def test_check_raises_with_status(self, logger):
        with pytest.raises(ExternalToolError) as exc:
            CommandExecutor(logger=logger).run("exit 9", stage="build", check=True)
        assert exc.value.exit_code == 9
        assert exc.value.stage == "build"

    def test_out_of_range_status_maps_to_1(self):
        assert ExternalToolError("x", 300).exit_code == 1
        assert ExternalToolError("x", -9).exit_code == 1

    def test_require(self):
        ex = CommandExecutor()
        ex.require(["sh"])
        with pytest.raises(ExternalToolError) as exc:
            ex.require(["sh", "no-such-tool-abc"], stage="fetch")
        assert exc.value.exit_code == 127
        assert "no-such-tool-abc" in str(exc.value)

    def test_render_quotes(self):
        assert render(["echo", "a b"]) == "echo 'a b'"
