"""Tests for the skill-shell command-line interface."""

from __future__ import annotations

import pytest

import skill_shell


@pytest.fixture
def cli(tmp_path, monkeypatch, bundled_skills):
    """Run the CLI with the bundled skills and a throwaway workspace."""
    monkeypatch.chdir(tmp_path)
    workspace = tmp_path / "workspace"

    def _run(*argv):
        return skill_shell.main(
            ["--skills-dir", str(bundled_skills), "--workspace", str(workspace), *argv]
        )

    _run.workspace = workspace
    return _run


class TestParser:
    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            skill_shell.build_parser().parse_args([])

    def test_exec_takes_one_command_line(self):
        args = skill_shell.build_parser().parse_args(["exec", "ls -la /skills"])
        assert args.command_line == "ls -la /skills"
        assert args.func is skill_shell.cmd_exec

    def test_run_defaults(self):
        args = skill_shell.build_parser().parse_args(["run"])
        assert args.prompt is None
        assert args.max_steps is None


class TestCommands:
    def test_exec_lists_uploaded_skills(self, cli, capsys):
        assert cli("exec", "ls /skills") == 0
        assert capsys.readouterr().out == "csv\ntext\n"
        assert (cli.workspace / "skills" / "text" / "SKILL.md").is_file()

    def test_exec_propagates_exit_code(self, cli, capsys):
        assert cli("exec", "cat /missing.txt") == 1
        assert "missing.txt" in capsys.readouterr().err
        assert cli("exec", "nosuchcommand") == 127

    def test_skills_table(self, cli, capsys):
        assert cli("skills") == 0
        out = capsys.readouterr().out
        assert "csv" in out
        assert "text" in out

    def test_show(self, cli, capsys):
        assert cli("show", "csv") == 0
        out = capsys.readouterr().out
        assert "/skills/csv/" in out
        assert "scripts/filter.sh" in out

    def test_show_unknown(self, cli, capsys):
        assert cli("show", "nope") == 1
        assert "Unknown skill" in capsys.readouterr().out

    def test_missing_skills_dir(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert skill_shell.main(["--skills-dir", str(tmp_path / "absent"), "skills"]) == 1

    def test_health_without_api_key(self, cli, capsys):
        assert cli("health") == 1
        out = capsys.readouterr().out
        assert "Health Check" in out

    def test_run_without_api_key(self, cli):
        assert cli("run", "hello") == 1

    def test_missing_config_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert skill_shell.main(["--config", str(tmp_path / "absent.yaml"), "skills"]) == 1
