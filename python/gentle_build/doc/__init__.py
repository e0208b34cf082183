from dataclasses import dataclass, field
from typing import Iterator, Optional, Tuple

from gentle_build import BlockScope
from gentle_build.doc.anchors import Anchor


@dataclass(frozen=True)
class Chapter:
    """One chapter source after macro expansion."""

    id: str
    title: str
    source_name: str
    anchor: Anchor
    contents: BlockScope


@dataclass(frozen=True)
class Document:
    """The ordered chapters of a build. Insertion order is table-of-contents order."""

    chapters: Tuple[Chapter, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        seen = set()
        for c in self.chapters:
            if c.id in seen:
                raise ValueError(f"Chapter id '{c.id}' appears twice in the document")
            seen.add(c.id)

    def __iter__(self) -> Iterator[Chapter]:
        return iter(self.chapters)

    def __len__(self) -> int:
        return len(self.chapters)

    def chapter(self, chapter_id: str) -> Chapter:
        for c in self.chapters:
            if c.id == chapter_id:
                return c
        raise KeyError(chapter_id)

    def neighbours(self, chapter_id: str) -> Tuple[Optional[Chapter], Optional[Chapter]]:
        """The (previous, next) chapters of chapter_id in TOC order, for navigation links."""
        ids = [c.id for c in self.chapters]
        i = ids.index(chapter_id)
        prev_ch = self.chapters[i - 1] if i > 0 else None
        next_ch = self.chapters[i + 1] if i + 1 < len(self.chapters) else None
        return prev_ch, next_ch

    def with_chapter(self, chapter: Chapter) -> "Document":
        return Document(chapters=self.chapters + (chapter,))

    def replace_chapter(self, chapter: Chapter) -> "Document":
        return Document(
            chapters=tuple(chapter if c.id == chapter.id else c for c in self.chapters)
        )
