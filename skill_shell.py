"""Skill Shell command-line interface.

Entry point for inspecting skills, running commands in the sandbox and
driving the agent loop.
"""

from __future__ import annotations

import argparse
import sys
from typing import List

from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from skillshell import health_check
from skillshell.agent import DEFAULT_INSTRUCTIONS, DEFAULT_PROMPT, AgentStep, build_client, run_agent
from skillshell.config import Settings, load_settings
from skillshell.errors import SkillShellError
from skillshell.skills import discover
from skillshell.tools import Toolset, create_skill_toolset


console = Console()


def _configure_logging(level: str = "INFO") -> None:
    """Configure basic loguru logging."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def _settings(args: argparse.Namespace) -> Settings:
    settings = load_settings(args.config)
    if args.skills_dir:
        settings.skills_dir = args.skills_dir
    if args.workspace:
        settings.workspace_dir = args.workspace
    return settings


def _toolset(settings: Settings) -> Toolset:
    return create_skill_toolset(
        settings.skills_dir,
        settings.workspace_dir,
        destination=settings.destination,
        timeout=settings.command_timeout,
        max_output_chars=settings.max_output_chars,
    )


def cmd_skills(args: argparse.Namespace) -> int:
    """Handle the `skills` command."""
    settings = args.settings
    try:
        discovery = discover(settings.skills_dir)
    except SkillShellError:
        logger.exception("Skill discovery failed in {dir}", dir=settings.skills_dir)
        return 1

    if not discovery.manifests:
        console.print(f"[yellow]No skills found in {settings.skills_dir}.[/yellow]")
        return 0

    table = Table(title="Available Skills", show_header=True, header_style="bold magenta")
    table.add_column("Name")
    table.add_column("Description")
    table.add_column("Files")
    for manifest in discovery.manifests:
        table.add_row(manifest.name, manifest.description, str(len(manifest.files)))
    console.print(table)
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    """Handle the `show` command."""
    settings = args.settings
    try:
        discovery = discover(settings.skills_dir)
    except SkillShellError:
        logger.exception("Skill discovery failed in {dir}", dir=settings.skills_dir)
        return 1

    manifest = discovery.get(args.name)
    if manifest is None:
        names = ", ".join(skill.name for skill in discovery.skills) or "none"
        console.print(f"[red]Unknown skill '{args.name}'. Available: {names}[/red]")
        return 1

    console.print(f"[bold green]{manifest.name}[/bold green]: {manifest.description}")
    console.print(f"[dim]location: {discovery.location(manifest.name, settings.destination)}/[/dim]")
    console.print(Markdown(manifest.instructions or "_(no instructions)_"))
    for relative in manifest.files:
        console.print(f"  - {relative}")
    return 0


def cmd_exec(args: argparse.Namespace) -> int:
    """Handle the `exec` command: run one command line in the sandbox."""
    settings = args.settings
    try:
        toolset = _toolset(settings)
    except SkillShellError:
        logger.exception("Sandbox setup failed.")
        return 1

    result = toolset.sandbox.execute_command(args.command_line)
    sys.stdout.write(result.stdout)
    sys.stderr.write(result.stderr)
    if result.timed_out:
        logger.warning("Command timed out after {seconds}s", seconds=settings.command_timeout)
    return result.exit_code


def _log_step(step: AgentStep) -> None:
    for call in step.tool_calls:
        console.print(f"[bold]Tool:[/bold] [cyan]{call.name}[/cyan]")
        if call.name == "skill":
            console.print(f"  Loading skill: {call.arguments.get('skillName', '')}")
        elif call.name == "bash":
            console.print(f"  Command: {call.arguments.get('command', '')}")
            stdout = call.result.get("stdout") or ""
            if stdout:
                console.print(f"  Output:\n{stdout[:500]}", markup=False, highlight=False)
    if step.tool_calls:
        console.print("")


def cmd_run(args: argparse.Namespace) -> int:
    """Handle the `run` command: send a prompt through the agent loop."""
    settings = args.settings
    try:
        toolset = _toolset(settings)
        client = build_client(settings)
    except (SkillShellError, RuntimeError):
        logger.exception("Agent setup failed.")
        return 1

    console.print(f"[bold]Workspace:[/bold] {toolset.sandbox.vfs.root}\n")
    console.print("[bold]Available skills:[/bold]")
    for skill in toolset.discovery.skills:
        console.print(f"  - {skill.name}: {skill.description}")
    console.print("\nSending prompt to the agent...\n")

    try:
        run = run_agent(
            args.prompt or DEFAULT_PROMPT,
            toolset,
            instructions=DEFAULT_INSTRUCTIONS,
            model=settings.llm_model,
            client=client,
            max_steps=args.max_steps or settings.agent_max_steps,
            on_step=_log_step,
        )
    except Exception:
        logger.exception("Agent run failed.")
        return 1

    console.print("\n[bold green]=== Final response ===[/bold green]\n")
    console.print(run.text, markup=False)
    console.print("\n[bold]=== Agent stats ===[/bold]")
    console.print(f"Steps: {len(run.steps)}")
    console.print(f"Total tokens: {run.total_tokens}")
    return 0


def cmd_health(args: argparse.Namespace) -> int:
    """Handle the `health` command."""
    return health_check.main(args.settings)


def build_parser() -> argparse.ArgumentParser:
    """Build and return the top-level argument parser."""
    parser = argparse.ArgumentParser(
        prog="skill-shell",
        description="Skill Shell: expose skill bundles as tools over a sandboxed shell.",
    )
    parser.add_argument("--skills-dir", default=None, help="Directory holding skill bundles.")
    parser.add_argument("--workspace", default=None, help="Real directory used as the sandbox root.")
    parser.add_argument("--config", default=None, help="YAML config file (default: config/skillshell.yaml).")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # skills
    skills_parser = subparsers.add_parser("skills", help="List discovered skills.")
    skills_parser.set_defaults(func=cmd_skills)

    # show
    show_parser = subparsers.add_parser("show", help="Print a skill's instructions and files.")
    show_parser.add_argument("name", help="Skill name, e.g. 'csv'.")
    show_parser.set_defaults(func=cmd_show)

    # exec
    exec_parser = subparsers.add_parser(
        "exec",
        help="Upload skills and run one command line in the sandbox.",
    )
    exec_parser.add_argument("command_line", metavar="COMMAND", help="Command line to run.")
    exec_parser.set_defaults(func=cmd_exec)

    # run
    run_parser = subparsers.add_parser("run", help="Run the agent loop on a prompt.")
    run_parser.add_argument(
        "prompt",
        nargs="?",
        default=None,
        help="Prompt for the agent (defaults to the sales CSV example).",
    )
    run_parser.add_argument("--max-steps", type=int, default=None, help="Upper bound on model turns.")
    run_parser.set_defaults(func=cmd_run)

    # health
    health_parser = subparsers.add_parser("health", help="Check configuration and sandbox setup.")
    health_parser.set_defaults(func=cmd_health)

    return parser


def main(argv: List[str] | None = None) -> int:
    """Main entry point for the Skill Shell CLI."""
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        args.settings = _settings(args)
    except (OSError, ValueError) as exc:
        _configure_logging()
        logger.error("Invalid configuration: {error}", error=str(exc))
        return 1
    _configure_logging(args.settings.log_level)
    func = getattr(args, "func", None)
    if func is None:
        parser.print_help()
        return 1
    return int(func(args))


if __name__ == "__main__":
    raise SystemExit(main())
