"""Jinja2 template rendering for generated configuration files."""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping, Sequence
from pathlib import Path

from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateError as JinjaTemplateError,
)

BUILTIN_TEMPLATES_DIR = Path(__file__).resolve().parent


class TemplateError(RuntimeError):
    """Raised when a template cannot be rendered or written."""


class TemplateEngine:
    """Render built-in templates, optionally shadowed by an override directory."""

    def __init__(self, search_path: Sequence[Path]) -> None:
        """Create an engine searching *search_path* in order."""
        self.search_path = tuple(search_path)
        self._env = Environment(
            loader=FileSystemLoader([str(path) for path in self.search_path]),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,
        )

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine that prefers templates from *override_dir*."""
        search_path: list[Path] = []
        if override_dir is not None and override_dir.is_dir():
            search_path.append(override_dir)
        search_path.append(BUILTIN_TEMPLATES_DIR)
        return cls(search_path)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context* and return the text."""
        try:
            template = self._env.get_template(template_name)
            return template.render(**context)
        except JinjaTemplateError as exc:
            raise TemplateError(f"Failed to render template {template_name}: {exc}") from exc

    def render_to_path(
        self,
        template_name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o644,
    ) -> bool:
        """Render *template_name* into *destination*.

        Returns ``True`` when the file was created or its content changed. The
        write goes through a temporary file in the destination directory and is
        moved into place atomically.
        """
        rendered = self.render_to_string(template_name, context)
        if destination.exists():
            try:
                if destination.read_text(encoding="utf-8") == rendered:
                    return False
            except OSError as exc:
                raise TemplateError(f"Failed to read {destination}: {exc}") from exc

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(destination.parent),
                prefix=f".{destination.name}.",
            )
        except OSError as exc:
            raise TemplateError(f"Failed to prepare {destination}: {exc}") from exc
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(rendered)
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, destination)
        except OSError as exc:
            raise TemplateError(f"Failed to write {destination}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)
        return True


__all__ = ["TemplateEngine", "TemplateError"]
