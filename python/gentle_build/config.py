import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from gentle_build.errors import ConfigError


class OutputFormat(Enum):
    Html = "html"
    Plain = "plain"


class BibliographyStyle(Enum):
    """How bibliography entries are numbered."""

    Declaration = "declaration"
    """Entries are numbered in the order they're listed in the bibliography, regardless of where they're cited."""
    FirstUse = "first-use"
    """Entries are numbered in order of first citation. Uncited entries come last, in declaration order."""


@dataclass(frozen=True)
class BuildConfig:
    output_format: OutputFormat = OutputFormat.Html
    strict_macros: bool = True
    """If False, unknown macros are passed through verbatim with a warning instead of failing the chapter."""
    bibliography_style: BibliographyStyle = BibliographyStyle.Declaration
    reference_prefix: str = "tut-"
    """Prepended to the key of \\see{key} before looking it up, so \\see{modules} refers to \\label{tut-modules}."""
    split_chapters: bool = False
    """HTML only: write one file per chapter instead of a single document."""
    parallel_workers: int = 1
    bib_files: List[str] = field(default_factory=list)
    emit_minimal_bib: bool = False
    """Write the cited subset of bib_files out as references.bib."""
    output_file_name: Optional[str] = None
    encoding: str = "utf-8"

    def with_overrides(self, overrides: Mapping[str, Any]) -> "BuildConfig":
        """Return a copy with some fields replaced.

        Values may already have the right type, or may be strings (from the command line or a TOC file)
        which are converted based on the field's type."""
        known = {f.name: f for f in dataclasses.fields(self)}
        changes: Dict[str, Any] = {}
        for key, value in overrides.items():
            key = key.replace("-", "_")
            if key not in known:
                raise ConfigError(
                    f"Unknown setting '{key}'. Known settings are {', '.join(sorted(known))}"
                )
            changes[key] = _convert(key, getattr(self, key), value)
        config = dataclasses.replace(self, **changes)
        config.validate()
        return config

    def validate(self) -> None:
        if self.parallel_workers < 1:
            raise ConfigError(
                f"parallel_workers must be at least 1, got {self.parallel_workers}"
            )
        if self.split_chapters and self.output_format != OutputFormat.Html:
            raise ConfigError("split_chapters is only supported for html output")


_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}


def _convert(key: str, current: Any, value: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        if isinstance(current, bool):
            lowered = value.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
            raise ValueError(f"'{value}' isn't a boolean")
        if isinstance(current, Enum):
            return type(current)(value.strip())
        if isinstance(current, int):
            return int(value)
        if isinstance(current, list):
            return [v.strip() for v in value.split(",") if v.strip()]
    except ValueError as e:
        raise ConfigError(f"Bad value for setting '{key}': {e}") from e
    if key == "output_file_name" and not value:
        return None
    return value


def parse_setting_args(setting_args: Optional[List[str]]) -> Dict[str, str]:
    """Parse colon-separated 'key:value' command-line arguments into a dictionary."""
    settings: Dict[str, str] = {}
    if setting_args:
        for setting_arg in setting_args:
            if ":" not in setting_arg:
                raise ConfigError(
                    f"Setting '{setting_arg}' should be of the form key:value"
                )
            key, value = setting_arg.split(":", maxsplit=1)
            settings[key.strip()] = value
    return settings
