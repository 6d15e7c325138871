"""Compiler options, optionally read from a YAML file."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


@dataclass(frozen=True)
class CompilerOptions:
    template_paths: tuple[str, ...] = ()
    workers: int = 1
    indent: int | None = None
    unit_name: str = "main"

    def __post_init__(self):
        if self.workers < 1:
            raise ValueError(f"workers must be at least 1, got {self.workers}")

    @classmethod
    def from_file(cls, path: str | Path) -> CompilerOptions:
        """Read options from YAML.

        Relative template paths are resolved against the file's directory.
        """
        path = Path(path)
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: configuration must be a mapping")
        unknown = set(data) - {"templates", "workers", "indent", "unit"}
        if unknown:
            raise ValueError(f"{path}: unknown option(s): {', '.join(sorted(unknown))}")
        templates = tuple(
            str((path.parent / t).resolve()) if not Path(t).is_absolute() else str(t)
            for t in data.get("templates") or ()
        )
        return cls(
            template_paths=templates,
            workers=int(data.get("workers", 1)),
            indent=data.get("indent"),
            unit_name=str(data.get("unit", "main")),
        )

    def with_templates(self, *paths: str) -> CompilerOptions:
        return CompilerOptions(
            template_paths=self.template_paths + tuple(paths),
            workers=self.workers,
            indent=self.indent,
            unit_name=self.unit_name,
        )
