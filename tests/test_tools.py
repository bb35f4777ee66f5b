"""Tests for the tool exposer: schemas, validation and the toolset lifecycle."""

from __future__ import annotations

import json

import pytest

from skillshell.bridge import ShellSandbox
from skillshell.errors import ToolsetNotReadyError, ToolValidationError
from skillshell.models import SandboxFile
from skillshell.shell import CommandInterpreter
from skillshell.skills import discover
from skillshell.tools import Toolset, ToolsetState, create_skill_toolset, truncate
from skillshell.vfs import VirtualFilesystem


@pytest.fixture
def unprepared(workspace, bundled_skills) -> Toolset:
    interpreter = CommandInterpreter(VirtualFilesystem(workspace), default_timeout=5)
    return Toolset(ShellSandbox(interpreter), discover(bundled_skills))


# ===========================================================================
# ToolDefinition format tests
# ===========================================================================


class TestToolDefinitionFormats:
    def test_tool_names(self, toolset):
        assert [tool.name for tool in toolset.definitions()] == ["skill", "bash", "readFile", "writeFile"]

    def test_to_openai(self, toolset):
        oai = toolset.definitions()[0].to_openai()
        assert oai["type"] == "function"
        func = oai["function"]
        assert func["name"] == "skill"
        assert "csv" in func["description"]
        params = func["parameters"]
        assert params["type"] == "object"
        assert params["required"] == ["skillName"]
        assert params["properties"]["skillName"]["type"] == "string"
        assert params["additionalProperties"] is False

    def test_to_anthropic(self, toolset):
        write = toolset.definitions()[3]
        anth = write.to_anthropic()
        assert anth["name"] == "writeFile"
        assert set(anth["input_schema"]["required"]) == {"path", "content"}

    def test_schema_is_json_serializable(self, toolset):
        json.dumps([tool.to_openai() for tool in toolset.definitions()])


# ===========================================================================
# Lifecycle
# ===========================================================================


class TestLifecycle:
    def test_invoke_before_prepare(self, unprepared):
        assert unprepared.state is ToolsetState.UNINITIALIZED
        with pytest.raises(ToolsetNotReadyError):
            unprepared.invoke("bash", {"command": "ls"})

    def test_prepare_uploads_and_readies(self, unprepared):
        written = unprepared.prepare()
        assert "/skills/text/SKILL.md" in written
        assert unprepared.state is ToolsetState.READY

    def test_prepare_twice_rejected(self, unprepared):
        unprepared.prepare()
        with pytest.raises(ToolsetNotReadyError):
            unprepared.prepare()

    def test_returns_to_ready_after_invoke(self, toolset):
        toolset.invoke("bash", {"command": "false"})
        assert toolset.state is ToolsetState.READY

    def test_create_skill_toolset(self, toolset, workspace):
        assert toolset.state is ToolsetState.READY
        assert (workspace / "skills" / "csv" / "SKILL.md").is_file()
        assert toolset.invoke("bash", {"command": "ls /skills"})["stdout"] == "csv\ntext\n"

    def test_custom_destination(self, workspace, bundled_skills):
        toolset = create_skill_toolset(bundled_skills, workspace, destination="/sandbox", timeout=5)
        assert (workspace / "sandbox" / "skills" / "csv" / "SKILL.md").is_file()
        assert toolset.invoke("skill", {"skillName": "csv"})["location"] == "/sandbox/skills/csv"
        assert toolset.invoke("bash", {"command": "pwd"})["stdout"] == "/sandbox\n"

    def test_descriptions_follow_destination(self, workspace, bundled_skills):
        toolset = create_skill_toolset(bundled_skills, workspace, destination="/sandbox", timeout=5)
        bash = toolset.definitions()[1]
        assert "/sandbox/skills/<skill-name>/" in bash.description
        assert "Skills live in /sandbox/skills/<skill-name>/." in toolset.instructions
        assert "working directory /sandbox." in toolset.instructions
        assert "location: /sandbox/skills/csv/" in toolset.instructions

    def test_default_destination_description(self, toolset):
        assert "live under /skills/<skill-name>/." in toolset.definitions()[1].description


# ===========================================================================
# Validation
# ===========================================================================


class TestValidation:
    @pytest.mark.parametrize(
        "name, arguments",
        [
            ("bash", {}),
            ("bash", {"command": ""}),
            ("bash", {"command": 5}),
            ("bash", {"command": "ls", "extra": True}),
            ("bash", "not json"),
            ("bash", "[1, 2]"),
            ("skill", {"name": "csv"}),
            ("writeFile", {"path": "/x.txt"}),
        ],
    )
    def test_malformed_arguments(self, toolset, name, arguments):
        with pytest.raises(ToolValidationError) as excinfo:
            toolset.invoke(name, arguments)
        assert excinfo.value.tool_name == name

    def test_unknown_tool(self, toolset):
        with pytest.raises(ToolValidationError):
            toolset.invoke("rm_rf", {})

    def test_rejected_call_never_reaches_sandbox(self, toolset, workspace):
        with pytest.raises(ToolValidationError):
            toolset.invoke("writeFile", {"path": "/x.txt", "content": "x", "mode": "w"})
        assert not (workspace / "x.txt").exists()

    def test_json_string_arguments(self, toolset):
        result = toolset.invoke("bash", '{"command": "echo hi"}')
        assert result["stdout"] == "hi\n"


# ===========================================================================
# Operations
# ===========================================================================


class TestOperations:
    def test_skill(self, toolset):
        result = toolset.invoke("skill", {"skillName": "csv"})
        assert result["name"] == "csv"
        assert result["location"] == "/skills/csv"
        assert "filter.sh" in result["instructions"]
        assert "scripts/sort.sh" in result["files"]

    def test_unknown_skill_is_data(self, toolset):
        result = toolset.invoke("skill", {"skillName": "nope"})
        assert "not found" in result["error"]
        assert "csv" in result["error"]

    def test_bash_result_shape(self, toolset):
        result = toolset.invoke("bash", {"command": "cat /missing"})
        assert set(result) == {"stdout", "stderr", "exit_code", "timed_out"}
        assert result["exit_code"] == 1
        assert result["stderr"]

    def test_write_then_read(self, toolset):
        assert toolset.invoke("writeFile", {"path": "/notes/a.txt", "content": "hello"}) == {
            "path": "/notes/a.txt",
            "success": True,
        }
        assert toolset.invoke("readFile", {"path": "/notes/a.txt"}) == {
            "path": "/notes/a.txt",
            "content": "hello",
        }

    def test_read_missing_is_data(self, toolset):
        assert "error" in toolset.invoke("readFile", {"path": "/missing.txt"})

    def test_escape_is_data(self, toolset):
        assert "error" in toolset.invoke("readFile", {"path": "/../../etc/passwd"})
        assert "error" in toolset.invoke("writeFile", {"path": "../x", "content": "x"})

    def test_output_truncated(self, workspace, bundled_skills):
        toolset = create_skill_toolset(bundled_skills, workspace, timeout=5, max_output_chars=10)
        result = toolset.invoke("bash", {"command": "printf '%s' abcdefghijklmnopqrst"})
        assert result["stdout"].startswith("abcdefghij")
        assert "[truncated 10 characters]" in result["stdout"]

    def test_truncate_helper(self):
        assert truncate("short", 10) == "short"
        assert truncate("x" * 12, 0) == "x" * 12

    def test_sales_scenario(self, toolset, sales_csv):
        toolset.invoke("writeFile", {"path": "/sales.csv", "content": sales_csv})
        result = toolset.invoke(
            "bash",
            {
                "command": "sh /skills/csv/scripts/filter.sh /sales.csv region North > /north.csv"
                " && sh /skills/csv/scripts/sort.sh /north.csv quantity desc"
            },
        )
        assert result["exit_code"] == 0
        quantities = [line.split(",")[2] for line in result["stdout"].splitlines()[1:]]
        assert quantities == ["200", "150", "100"]

    def test_text_skill(self, toolset):
        toolset.invoke("writeFile", {"path": "/doc.txt", "content": "The cat. The dog.\nthe end\n"})
        result = toolset.invoke("bash", {"command": "sh /skills/text/scripts/wordfreq.sh /doc.txt 2"})
        assert result["stdout"] == "3 the\n1 cat\n"
        stats = toolset.invoke("bash", {"command": "sh /skills/text/scripts/stats.sh /doc.txt"})
        assert stats["stdout"] == "lines: 2\nwords: 6\nchars: 26\n"

    def test_unencodable_content_is_data(self, toolset, workspace):
        result = toolset.invoke("writeFile", json.dumps({"path": "/x.txt", "content": "ok \ud800"}))
        assert "error" in result
        assert "/x.txt" in result["error"]
        assert toolset.state is ToolsetState.READY
        assert toolset.invoke("bash", {"command": "echo still here"})["stdout"] == "still here\n"

    def test_read_undecodable_bytes(self, toolset):
        toolset.sandbox.write_files([SandboxFile("/blob.bin", b"ok\xff\n")])
        assert toolset.invoke("readFile", {"path": "/blob.bin"})["content"] == "ok\ufffd\n"

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("1.5", "item,price\nB,1.5\n"),
            ("10*", "item,price\nC,10*\n"),
            ("9", "item,price\n"),
        ],
    )
    def test_filter_matches_values_literally(self, toolset, value, expected):
        toolset.invoke("writeFile", {"path": "/p.csv", "content": "item,price\nA,105\nB,1.5\nC,10*\n"})
        result = toolset.invoke("bash", {"command": f"sh /skills/csv/scripts/filter.sh /p.csv price '{value}'"})
        assert result["exit_code"] == 0
        assert result["stdout"] == expected

    def test_filter_column_name_is_literal(self, toolset):
        toolset.invoke("writeFile", {"path": "/p.csv", "content": "a.b,axb\n1,2\n3,4\n"})
        result = toolset.invoke("bash", {"command": "sh /skills/csv/scripts/filter.sh /p.csv axb 4"})
        assert result["stdout"] == "a.b,axb\n3,4\n"
        missing = toolset.invoke("bash", {"command": "sh /skills/csv/scripts/filter.sh /p.csv 'a.*' 1"})
        assert missing["exit_code"] == 1
        assert "unknown column" in missing["stderr"]
