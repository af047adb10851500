from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fnmanifest.domain.errors import ConfigError
from fnmanifest.domain.values import SourceLocation

log = logging.getLogger(__name__)

DEFAULT_OUTPUT = ".fnmanifest/functions.yaml"


class BuildConfig(BaseModel):
    """
    Build settings, read from ``[tool.fnmanifest]`` in the scanned project's
    pyproject.toml. CLI flags override individual fields.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    source: str = "."
    output: str = DEFAULT_OUTPUT
    format: Literal["yaml", "json"] = "yaml"
    exclude: list[str] = Field(default_factory=list)
    workers: Optional[int] = Field(default=None, ge=1)

    def source_root(self, root: Path) -> Path:
        return (root / self.source).resolve()

    def output_path(self, root: Path) -> Path:
        out = Path(self.output).expanduser()
        return out if out.is_absolute() else (root / out).resolve()


def load_config(root: Path, overrides: Optional[dict[str, Any]] = None) -> BuildConfig:
    data: dict[str, Any] = {}
    pyproject = root / "pyproject.toml"
    if pyproject.is_file():
        try:
            doc = tomllib.loads(pyproject.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"invalid pyproject.toml: {e}", SourceLocation("pyproject.toml", 1, 1)) from e
        data = dict(doc.get("tool", {}).get("fnmanifest", {}))
        if data:
            log.debug("loaded [tool.fnmanifest] from %s", pyproject)

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    try:
        return BuildConfig.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first.get("loc", ())) or "config"
        raise ConfigError(f"invalid [tool.fnmanifest] setting {where}: {first.get('msg')}") from e
