"""Health check utilities for Skill Shell.

Verifies the local setup before an agent run:
- Configuration file and settings
- Skills directory and manifests
- Workspace writability through the sandbox
- Model API key presence
"""

from __future__ import annotations

import tempfile
from typing import Dict, Optional, Tuple

from loguru import logger
from rich.console import Console
from rich.table import Table

from .config import Settings, load_settings
from .errors import SkillShellError
from .shell import CommandInterpreter
from .skills import discover
from .vfs import VirtualFilesystem


console = Console()


def _check_skills(settings: Settings) -> Tuple[bool, str]:
    """Check that the skills directory exists and its manifests parse."""
    try:
        discovery = discover(settings.skills_dir)
    except SkillShellError as exc:
        return False, str(exc)
    if not discovery.manifests:
        return False, f"No skills found in {settings.skills_dir}."
    names = ", ".join(skill.name for skill in discovery.skills)
    return True, f"{len(discovery.manifests)} skill(s): {names}"


def _check_workspace(settings: Settings) -> Tuple[bool, str]:
    """Check that the workspace can be written and read back."""
    try:
        vfs = VirtualFilesystem(settings.workspace_dir)
        probe = "/.skillshell-health"
        vfs.write_file(probe, b"ok")
        data = vfs.read_file(probe)
        vfs.remove(probe)
    except (SkillShellError, OSError) as exc:
        logger.exception("Workspace health check failed.")
        return False, f"Workspace error: {exc}"
    if data != b"ok":
        return False, "Workspace read back unexpected data."
    return True, f"Workspace writable at {vfs.root}"


def _check_interpreter() -> Tuple[bool, str]:
    """Run a tiny pipeline in a throwaway sandbox."""
    with tempfile.TemporaryDirectory() as tmp:
        interpreter = CommandInterpreter(VirtualFilesystem(tmp), default_timeout=5)
        result = interpreter.execute("echo ok | tr a-z A-Z")
    if result.exit_code != 0 or result.stdout != "OK\n":
        return False, f"Unexpected interpreter result: {result.to_dict()}"
    return True, "Interpreter pipeline OK."


def _check_api_key(settings: Settings) -> Tuple[bool, str]:
    if not settings.llm_api_key:
        return False, "No LLM_API_KEY / DEEPSEEK_API_KEY / OPENAI_API_KEY set."
    return True, f"API key present for {settings.llm_base_url} ({settings.llm_model})."


def run_health_check(settings: Optional[Settings] = None) -> Dict[str, Dict[str, str]]:
    """Run all health checks and return structured results."""
    if settings is None:
        settings = load_settings()
    results: Dict[str, Dict[str, str]] = {}

    for name, check in (
        ("skills", lambda: _check_skills(settings)),
        ("workspace", lambda: _check_workspace(settings)),
        ("interpreter", _check_interpreter),
        ("llm", lambda: _check_api_key(settings)),
    ):
        ok, details = check()
        results[name] = {"status": "ok" if ok else "error", "details": details}

    return results


def main(settings: Optional[Settings] = None) -> int:
    """Print the health check table; returns 0 when every check passed."""
    results = run_health_check(settings)

    table = Table(title="Skill Shell Health Check", show_header=True, header_style="bold magenta")
    table.add_column("Component")
    table.add_column("Status")
    table.add_column("Details")

    overall_ok = True
    for name, info in results.items():
        status = info.get("status", "error")
        details = info.get("details", "")
        overall_ok = overall_ok and status == "ok"
        color = "green" if status == "ok" else "red"
        table.add_row(name, f"[{color}]{status}[/{color}]", details)

    console.print(table)
    return 0 if overall_ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
