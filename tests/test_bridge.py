"""Tests for the sandbox bridge."""

from __future__ import annotations

import pytest

from skillshell.bridge import Sandbox, ShellSandbox
from skillshell.errors import NotFoundError, PathEscapeError, UploadError
from skillshell.models import SandboxFile
from skillshell.skills import discover


@pytest.fixture
def sandbox(interpreter) -> ShellSandbox:
    return ShellSandbox(interpreter, destination="/", timeout=5)


class TestEffectivePath:
    def test_relative_joined_onto_destination(self, interpreter):
        sandbox = ShellSandbox(interpreter, destination="/work")
        assert sandbox.effective_path("a.txt") == "/work/a.txt"
        assert sandbox.effective_path("skills/csv/SKILL.md") == "/work/skills/csv/SKILL.md"

    def test_absolute_passes_through(self, interpreter):
        sandbox = ShellSandbox(interpreter, destination="/work")
        assert sandbox.effective_path("/work/a.txt") == "/work/a.txt"
        assert sandbox.effective_path("/other/a.txt") == "/other/a.txt"

    def test_destination_normalized_once(self, interpreter):
        assert ShellSandbox(interpreter, destination="work//sub/").destination == "/work/sub"

    def test_satisfies_protocol(self, sandbox):
        assert isinstance(sandbox, ShellSandbox)
        protocol_sandbox: Sandbox = sandbox
        assert protocol_sandbox.execute_command("true").exit_code == 0


class TestWriteFiles:
    def test_uploaded_skills_are_listed(self, sandbox, bundled_skills):
        written = sandbox.write_files(discover(bundled_skills).files)
        assert "/skills/csv/SKILL.md" in written
        result = sandbox.execute_command("ls /skills")
        assert result.stdout == "csv\ntext\n"

    def test_commands_run_in_destination(self, interpreter):
        sandbox = ShellSandbox(interpreter, destination="/work")
        sandbox.write_files([SandboxFile("note.txt", "hi\n")])
        assert sandbox.execute_command("pwd").stdout == "/work\n"
        assert sandbox.execute_command("cat note.txt").stdout == "hi\n"

    def test_read_file(self, sandbox):
        sandbox.write_files([SandboxFile("dir/f.txt", b"bytes\n")])
        assert sandbox.read_file("dir/f.txt") == b"bytes\n"
        assert sandbox.read_file("/dir/f.txt") == b"bytes\n"
        with pytest.raises(NotFoundError):
            sandbox.read_file("/missing.txt")

    def test_partial_failure_reports_written(self, sandbox):
        files = [
            SandboxFile("ok.txt", "fine"),
            SandboxFile("blocker", "a file"),
            SandboxFile("blocker/child.txt", "cannot live under a file"),
            SandboxFile("never.txt", "not reached"),
        ]
        with pytest.raises(UploadError) as excinfo:
            sandbox.write_files(files)
        assert excinfo.value.written == ["/ok.txt", "/blocker"]
        assert excinfo.value.failed == "/blocker/child.txt"
        assert not sandbox.vfs.exists("/never.txt")

    def test_path_escape_propagates(self, sandbox):
        with pytest.raises(PathEscapeError):
            sandbox.write_files([SandboxFile("../escape.txt", "x")])

    def test_timeout_applies(self, interpreter):
        sandbox = ShellSandbox(interpreter, timeout=0.1)
        result = sandbox.execute_command("sleep 3")
        assert result.timed_out

    def test_read_file_is_lossless(self, sandbox):
        payload = bytes(range(256))
        sandbox.write_files([SandboxFile("blob.bin", payload)])
        assert sandbox.read_file("blob.bin") == payload

    def test_unencodable_text_is_upload_error(self, sandbox):
        with pytest.raises(UploadError) as excinfo:
            sandbox.write_files([SandboxFile("a.txt", "fine"), SandboxFile("b.txt", "\udc80")])
        assert excinfo.value.written == ["/a.txt"]
        assert excinfo.value.failed == "/b.txt"
        assert isinstance(excinfo.value.cause, UnicodeError)
