#!/usr/bin/env python3
"""Report manifest problems in a skills directory.

Flags subdirectories without SKILL.md, unparsable frontmatter, names that do
not match their directory, empty descriptions and duplicate names.
"""

import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from skillshell.skills import MANIFEST_NAME, parse_manifest, skill_directories


def main():
    skills_dir = sys.argv[1] if len(sys.argv) > 1 else os.environ.get("SKILLS_DIR") or "skills"
    root = Path(skills_dir).expanduser()
    if not root.is_dir():
        print(f"Skills directory not found: {root}")
        return 1
    problems = 0
    seen = {}
    for skill_dir in skill_directories(root):
        if not (skill_dir / MANIFEST_NAME).is_file():
            print(f"{skill_dir.name}: missing {MANIFEST_NAME}")
            problems += 1
            continue
        try:
            manifest = parse_manifest(skill_dir)
        except ValueError as exc:
            print(f"{skill_dir.name}: {exc}")
            problems += 1
            continue
        if manifest.name != skill_dir.name:
            print(f"{skill_dir.name}: frontmatter name is '{manifest.name}'")
            problems += 1
        if not manifest.description:
            print(f"{skill_dir.name}: empty description")
            problems += 1
        if manifest.name in seen:
            print(f"{skill_dir.name}: duplicate name '{manifest.name}' (also in {seen[manifest.name]})")
            problems += 1
        seen.setdefault(manifest.name, skill_dir.name)
    print(f"Checked {len(seen)} skills, {problems} problem(s)")
    return 1 if problems else 0


if __name__ == "__main__":
    sys.exit(main())
