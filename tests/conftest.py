"""Shared test fixtures for Skill Shell.

Provides sandbox roots under ``tmp_path``, an interpreter bound to them, the
bundled skills directory and a helper for writing throwaway skill bundles.
"""

from pathlib import Path

import pytest

from skillshell.shell import CommandInterpreter
from skillshell.tools import create_skill_toolset
from skillshell.vfs import VirtualFilesystem

REPO_ROOT = Path(__file__).resolve().parent.parent
BUNDLED_SKILLS = REPO_ROOT / "skills"

SALES_CSV = """date,product,quantity,price,region
2024-01-15,Widget A,100,29.99,North
2024-01-15,Widget B,50,49.99,South
2024-01-16,Widget A,75,29.99,East
2024-01-16,Widget C,200,19.99,North
2024-01-17,Widget B,30,49.99,West
2024-01-17,Widget A,150,29.99,North
"""

_ENV_VARS = (
    "SKILLS_DIR",
    "WORKSPACE_DIR",
    "SANDBOX_DESTINATION",
    "COMMAND_TIMEOUT",
    "MAX_OUTPUT_CHARS",
    "LOG_LEVEL",
    "LLM_BASE_URL",
    "LLM_MODEL",
    "LLM_API_KEY",
    "DEEPSEEK_API_KEY",
    "OPENAI_API_KEY",
    "AGENT_MAX_STEPS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of settings-dependent tests."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def workspace(tmp_path) -> Path:
    return tmp_path / "workspace"


@pytest.fixture
def vfs(workspace) -> VirtualFilesystem:
    return VirtualFilesystem(workspace)


@pytest.fixture
def interpreter(vfs) -> CommandInterpreter:
    return CommandInterpreter(vfs, default_timeout=10)


@pytest.fixture
def sh(interpreter):
    """Shorthand for ``interpreter.execute``."""
    return interpreter.execute


@pytest.fixture
def bundled_skills() -> Path:
    return BUNDLED_SKILLS


@pytest.fixture
def toolset(workspace):
    """READY toolset over the bundled skills."""
    return create_skill_toolset(BUNDLED_SKILLS, workspace, timeout=10)


@pytest.fixture
def sales_csv() -> str:
    return SALES_CSV


@pytest.fixture
def make_skill(tmp_path):
    """Return a helper writing a skill bundle under ``tmp_path / 'skills'``."""
    root = tmp_path / "skills"
    root.mkdir(exist_ok=True)

    def _make(dirname, name=None, description="", body="Instructions.", files=None, frontmatter=None):
        directory = root / dirname
        directory.mkdir(parents=True, exist_ok=True)
        if frontmatter is None:
            lines = ["---"]
            if name is not None:
                lines.append(f"name: {name}")
            lines.append(f"description: {description}")
            lines.append("---")
            frontmatter = "\n".join(lines) + "\n"
        (directory / "SKILL.md").write_text(frontmatter + body + "\n", encoding="utf-8")
        for relative, content in (files or {}).items():
            target = directory / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        return directory

    _make.root = root
    return _make
