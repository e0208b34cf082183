"""The error taxonomy of a build.

Every error carries an optional Location so a diagnostic list can always point at chapter + offset.
Loader and expander errors abort a single chapter, resolver errors are aggregated,
and the build as a whole fails by raising BuildFailed with every error it found.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from gentle_build import Location


@dataclass(frozen=True)
class BuildWarning:
    """A non-fatal diagnostic, e.g. an unknown macro passed through verbatim."""

    message: str
    location: Optional[Location] = None

    def diagnostic(self) -> str:
        if self.location is None:
            return f"Warning: {self.message}"
        return f"{self.location}: Warning: {self.message}"


class BuildError(Exception):
    location: Optional[Location]

    def __init__(self, message: str, location: Optional[Location] = None) -> None:
        super().__init__(message)
        self.message = message
        self.location = location

    def diagnostic(self) -> str:
        if self.location is None:
            return f"{type(self).__name__}: {self.message}"
        return f"{self.location}: {type(self).__name__}: {self.message}"


class ConfigError(BuildError):
    pass


class LoadError(BuildError):
    """A chapter source was missing, unreadable, or couldn't be decoded."""

    path: str

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Couldn't load '{path}': {reason}")
        self.path = path


class MarkupError(BuildError):
    pass


class UnknownMacroError(MarkupError):
    macro: str

    def __init__(self, macro: str, location: Location) -> None:
        super().__init__(f"Unknown macro '{macro}'", location)
        self.macro = macro


class MalformedMarkupError(MarkupError):
    pass


class DuplicateLabelError(BuildError):
    key: str
    first: Location

    def __init__(self, key: str, location: Location, first: Location) -> None:
        super().__init__(
            f"Label '{key}' declared twice, first declaration at {first}", location
        )
        self.key = key
        self.first = first


class UnresolvedReferenceError(BuildError):
    key: str

    def __init__(self, key: str, location: Location) -> None:
        super().__init__(f"Reference to '{key}' has no matching label", location)
        self.key = key


class DuplicateCitationKeyError(BuildError):
    key: str

    def __init__(self, key: str, location: Optional[Location]) -> None:
        super().__init__(f"Bibliography entry '{key}' declared twice", location)
        self.key = key


class UnresolvedCitationError(BuildError):
    key: str

    def __init__(self, key: str, location: Location) -> None:
        super().__init__(
            f"Citation of '{key}' has no matching bibliography entry", location
        )
        self.key = key


class BuildFailed(Exception):
    """Raised when a build found one or more BuildErrors. No output is written in that case."""

    errors: List[BuildError]

    def __init__(self, errors: Sequence[BuildError]) -> None:
        if not errors:
            raise ValueError("BuildFailed must carry at least one error")
        self.errors = list(errors)
        super().__init__(
            f"Build failed with {len(self.errors)} error(s):\n"
            + "\n".join(e.diagnostic() for e in self.errors)
        )

    def of_type(self, t: type) -> List[BuildError]:
        return [e for e in self.errors if isinstance(e, t)]
