"""The Source Loader: reads the chapter sources named by a table of contents.

Chapter order always comes from the table of contents, never from file names.

A table of contents file has one chapter per line:

    # comments and blank lines are ignored
    #build reference_prefix=tut-
    intro.tex
    modules = chapters/modules-v2.tex

`id = path` gives the chapter an explicit id, otherwise the id is the file stem.
`#build key=value` lines override BuildConfig settings for this document,
and take priority over the command line.
"""

import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Sequence, Tuple

from gentle_build import SourceText
from gentle_build.build_system import BuildSystem
from gentle_build.errors import LoadError

TOC_BUILD_DIRECTIVE = re.compile(r"^#build\s+([\w-]+)\s*=\s*(.*)$")
TOC_NAMED_ENTRY = re.compile(r"^([\w.-]+)\s*=\s*(\S.*)$")
_UNSAFE_ID_CHARS = re.compile(r"[^\w-]")


def chapter_id_for(path: str) -> str:
    stem = PurePosixPath(path.replace("\\", "/")).stem
    return _UNSAFE_ID_CHARS.sub("-", stem) or "chapter"


@dataclass(frozen=True)
class TocEntry:
    chapter_id: str
    path: str


@dataclass
class TableOfContents:
    entries: List[TocEntry] = field(default_factory=list)
    settings: Dict[str, str] = field(default_factory=dict)
    """Overrides requested through `#build` lines"""

    @classmethod
    def from_paths(cls, paths: Sequence[str]) -> "TableOfContents":
        return cls(entries=[TocEntry(chapter_id_for(p), p) for p in paths])

    @classmethod
    def parse(cls, text: str) -> "TableOfContents":
        toc = cls()
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            directive = TOC_BUILD_DIRECTIVE.match(line)
            if directive:
                toc.settings[directive.group(1)] = directive.group(2).strip()
                continue
            if line.startswith("#"):
                continue
            named = TOC_NAMED_ENTRY.match(line)
            if named:
                toc.entries.append(TocEntry(named.group(1), named.group(2).strip()))
            else:
                toc.entries.append(TocEntry(chapter_id_for(line), line))
        return toc


@dataclass(frozen=True)
class ChapterSource:
    chapter_id: str
    path: str
    source: SourceText

    @property
    def text(self) -> str:
        return self.source.text


def load_chapter(
    build_sys: BuildSystem, entry: TocEntry, encoding: str = "utf-8"
) -> ChapterSource:
    text = build_sys.read_text(entry.path, encoding)
    return ChapterSource(
        chapter_id=entry.chapter_id,
        path=entry.path,
        source=SourceText(entry.chapter_id, text),
    )


def load_chapters(
    build_sys: BuildSystem, toc: TableOfContents, encoding: str = "utf-8"
) -> Tuple[List[Optional[ChapterSource]], List[LoadError]]:
    """Load every chapter in TOC order.

    A chapter that fails to load leaves a None in its slot, and the error is collected,
    so the remaining chapters can still be checked in the same run."""
    errors: List[LoadError] = []
    seen: Dict[str, str] = {}
    sources: List[Optional[ChapterSource]] = []
    for entry in toc.entries:
        if entry.chapter_id in seen:
            errors.append(
                LoadError(
                    entry.path,
                    f"chapter id '{entry.chapter_id}' is already used by '{seen[entry.chapter_id]}'",
                )
            )
            sources.append(None)
            continue
        seen[entry.chapter_id] = entry.path
        try:
            sources.append(load_chapter(build_sys, entry, encoding))
        except LoadError as e:
            errors.append(e)
            sources.append(None)
    return sources, errors
