import bisect
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Tuple, Union

__all__ = [
    "Block",
    "BlockScope",
    "Inline",
    "InlineScope",
    "LineBreak",
    "Location",
    "Paragraph",
    "Passthrough",
    "SourceText",
    "Text",
    "plain_text",
]


@dataclass(frozen=True)
class Location:
    """A point in a chapter source, used for diagnostics.

    `offset` is the character offset into the source; `line` and `column` are 1-based."""

    chapter: str
    offset: int
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        if self.line:
            return f"{self.chapter}:{self.line}:{self.column}"
        return f"{self.chapter}@{self.offset}"


class SourceText:
    """The text of a single chapter, with a lookup from character offsets to Locations."""

    chapter: str
    text: str
    _line_starts: List[int]

    def __init__(self, chapter: str, text: str) -> None:
        self.chapter = chapter
        self.text = text
        self._line_starts = [0]
        for i, c in enumerate(text):
            if c == "\n":
                self._line_starts.append(i + 1)

    def location(self, offset: int) -> Location:
        line_idx = bisect.bisect_right(self._line_starts, offset) - 1
        return Location(
            chapter=self.chapter,
            offset=offset,
            line=line_idx + 1,
            column=offset - self._line_starts[line_idx] + 1,
        )


class Block:
    is_block: bool = True


class Inline:
    is_inline: bool = True


@dataclass(frozen=True)
class Text(Inline):
    text: str


@dataclass(frozen=True)
class LineBreak(Inline):
    pass


@dataclass(frozen=True)
class Passthrough(Inline):
    """The unexpanded source of a macro the expander didn't recognize.

    Only produced when unknown macros are not fatal. Renderers emit `source` as escaped text."""

    source: str


@dataclass(frozen=True)
class InlineScope(Inline):
    contents: Tuple[Inline, ...] = ()

    def __iter__(self) -> Iterator[Inline]:
        return iter(self.contents)

    def __len__(self) -> int:
        return len(self.contents)


@dataclass(frozen=True)
class BlockScope(Block):
    contents: Tuple[Block, ...] = ()

    def __iter__(self) -> Iterator[Block]:
        return iter(self.contents)

    def __len__(self) -> int:
        return len(self.contents)


@dataclass(frozen=True)
class Paragraph(Block):
    contents: InlineScope = field(default_factory=InlineScope)

    def __iter__(self) -> Iterator[Inline]:
        return iter(self.contents)


def plain_text(inls: Union[Inline, Iterable[Inline]]) -> str:
    """Flatten inline content to a plain string, e.g. for HTML <title> or the table of contents.

    Anything with a `text`, `code`, `tex`, `source` or `plain` attribute contributes it, anything with
    inline children is recursed into."""
    if isinstance(inls, Inline) and not isinstance(inls, InlineScope):
        inls = [inls]
    s = ""
    for i in inls:
        if isinstance(i, Text):
            s += i.text
        elif isinstance(i, LineBreak):
            s += " "
        elif isinstance(i, InlineScope):
            s += plain_text(i)
        else:
            for attr in ("text", "code", "tex", "source", "plain"):
                value = getattr(i, attr, None)
                if isinstance(value, str):
                    s += value
                    break
            else:
                contents = getattr(i, "contents", None)
                if isinstance(contents, (InlineScope, list, tuple)):
                    s += plain_text(contents)
    return s
