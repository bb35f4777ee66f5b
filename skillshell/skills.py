"""Skill registry for Skill Shell.

Discovers skill bundles in a skills directory. Each immediate subdirectory
holding a ``SKILL.md`` is one skill: YAML frontmatter (``name``,
``description``) followed by markdown instructions. Discovery is a one-shot
snapshot; later changes on disk are not observed.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger
from yaml import YAMLError, safe_load

from .errors import AmbiguousSkillError, NotFoundError
from .models import SandboxFile, SkillSummary

MANIFEST_NAME = "SKILL.md"
_EXCLUDED_DIRS = {".git", ".hg", ".svn", "__pycache__"}


def _unwrap_code_fence(text: str) -> str:
    """If content is wrapped in a ``` fenced block, unwrap it.

    Hand-edited or generated manifests sometimes arrive inside a
    ```markdown ... ``` fence; strip it so the file starts with frontmatter.
    """
    lines = text.splitlines()
    if not lines or not lines[0].strip().startswith("```"):
        return text

    for idx in range(1, len(lines)):
        if lines[idx].strip().startswith("```"):
            inner = "\n".join(lines[1:idx])
            rest = "\n".join(lines[idx + 1 :])
            if rest.strip():
                inner = inner + "\n" + rest
            return inner.lstrip("\n")

    return text


def _parse_frontmatter(text: str) -> Tuple[Dict[str, Any], str]:
    """Split a manifest into its frontmatter mapping and markdown body.

    A manifest without a leading ``---`` line has no frontmatter and the whole
    text is the body. Raises ``ValueError`` for an unterminated block, invalid
    YAML or frontmatter that is not a mapping.
    """
    lines = _unwrap_code_fence(text).splitlines()
    if not lines or lines[0].strip() != "---":
        return {}, text.strip()

    end_idx = None
    for idx in range(1, len(lines)):
        if lines[idx].strip() == "---":
            end_idx = idx
            break

    if end_idx is None:
        raise ValueError("missing YAML frontmatter end delimiter")

    try:
        data = safe_load("\n".join(lines[1:end_idx])) or {}
    except YAMLError as exc:
        raise ValueError(f"invalid YAML frontmatter: {exc}") from exc

    if not isinstance(data, dict):
        raise ValueError("frontmatter is not a mapping")

    return data, "\n".join(lines[end_idx + 1 :]).strip()


def _valid_name(name: str) -> bool:
    return bool(name) and "/" not in name and "\\" not in name and name not in (".", "..")


@dataclass(frozen=True)
class SkillManifest:
    """Parsed description of one skill bundle."""

    name: str
    description: str
    instructions: str
    files: Tuple[str, ...]
    directory: Path
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def summary(self) -> SkillSummary:
        return SkillSummary(name=self.name, description=self.description)


def _bundle_files(directory: Path) -> List[Path]:
    files: List[Path] = []
    for path in sorted(directory.rglob("*")):
        relative = path.relative_to(directory)
        if any(part in _EXCLUDED_DIRS for part in relative.parts):
            continue
        if path.is_file():
            files.append(path)
    return files


def parse_manifest(directory: Path) -> SkillManifest:
    """Parse ``directory/SKILL.md`` into a :class:`SkillManifest`.

    ``name`` falls back to the directory name and ``description`` to an empty
    string. Raises ``ValueError`` for malformed manifests or names that are
    not a single path segment.
    """
    manifest_path = directory / MANIFEST_NAME
    try:
        text = manifest_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ValueError(f"cannot read {manifest_path}: {exc}") from exc

    meta, body = _parse_frontmatter(text)
    name = meta.pop("name", None)
    name = str(name).strip() if name is not None else directory.name
    if not _valid_name(name):
        raise ValueError(f"invalid skill name {name!r}")
    description = meta.pop("description", None)
    description = " ".join(str(description).split()) if description is not None else ""

    files = tuple(
        path.relative_to(directory).as_posix() for path in _bundle_files(directory)
    )
    return SkillManifest(
        name=name,
        description=description,
        instructions=body,
        files=files,
        directory=directory,
        metadata=meta,
    )


@dataclass
class SkillDiscovery:
    """Result of one discovery pass over a skills directory."""

    manifests: List[SkillManifest]
    files: List[SandboxFile]
    prefix: str = ""

    @property
    def skills(self) -> List[SkillSummary]:
        return [manifest.summary for manifest in self.manifests]

    @property
    def instructions_by_name(self) -> Dict[str, str]:
        return {manifest.name: manifest.instructions for manifest in self.manifests}

    def get(self, name: str) -> Optional[SkillManifest]:
        for manifest in self.manifests:
            if manifest.name == name:
                return manifest
        return None

    def root(self, destination: str = "/") -> str:
        """Return the sandbox directory that holds every skill."""
        return posixpath.join(destination, self.prefix.strip("/"), "skills")

    def location(self, name: str, destination: str = "/") -> str:
        """Return where a skill's files live inside the sandbox."""
        return posixpath.join(self.root(destination), name)

    def instructions(self, destination: str = "/") -> str:
        """Build the prompt block that advertises every skill to the agent."""
        if not self.manifests:
            return "No skills are available."
        lines = ["Available skills (load one with the `skill` tool before using it):", ""]
        for manifest in self.manifests:
            description = manifest.description or "(no description)"
            lines.append(f"- {manifest.name}: {description}")
            lines.append(f"  location: {self.location(manifest.name, destination)}/")
        return "\n".join(lines)


def skill_directories(root: Path) -> List[Path]:
    """Return the subdirectories of ``root`` that may hold a skill, sorted by name.

    Hidden directories (``.git``, ``.venv``, ...) and ``__pycache__`` are never skills.
    """
    return sorted(
        p for p in root.iterdir() if p.is_dir() and not (p.name.startswith(".") or p.name in _EXCLUDED_DIRS)
    )


def discover(skills_directory: str | Path, prefix: str = "") -> SkillDiscovery:
    """Discover skill bundles under ``skills_directory``.

    Every file of every skill becomes a :class:`SandboxFile` at
    ``<prefix>/skills/<skill-name>/<relative-path>`` (no leading slash), ready
    to hand to a sandbox's ``write_files``.
    """
    root = Path(skills_directory).expanduser()
    if not root.is_dir():
        raise NotFoundError(str(root))

    manifests: List[SkillManifest] = []
    seen: Dict[str, Path] = {}
    for directory in skill_directories(root):
        if not (directory / MANIFEST_NAME).is_file():
            logger.warning("Skipping {dir}: no {manifest}", dir=str(directory), manifest=MANIFEST_NAME)
            continue
        try:
            manifest = parse_manifest(directory)
        except ValueError as exc:
            logger.warning("Skipping {dir}: {error}", dir=str(directory), error=str(exc))
            continue
        if manifest.name in seen:
            raise AmbiguousSkillError(manifest.name, [str(seen[manifest.name]), str(directory)])
        seen[manifest.name] = directory
        manifests.append(manifest)

    base = posixpath.join(prefix.strip("/"), "skills") if prefix.strip("/") else "skills"
    files = [
        SandboxFile(
            path=f"{base}/{manifest.name}/{relative}",
            content=(manifest.directory / relative).read_bytes(),
        )
        for manifest in manifests
        for relative in manifest.files
    ]
    logger.info(
        "Discovered {count} skill(s) with {files} file(s) in {root}",
        count=len(manifests),
        files=len(files),
        root=str(root),
    )
    return SkillDiscovery(manifests=manifests, files=files, prefix=prefix.strip("/"))
