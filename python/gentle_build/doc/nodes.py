from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple

from typing_extensions import override

from gentle_build import Block, BlockScope, Inline, InlineScope, Location
from gentle_build.doc.anchors import Anchor
from gentle_build.doc.user_nodes import UserNode


@dataclass(frozen=True)
class Heading(UserNode, Block):
    title: InlineScope
    anchor: Anchor | None
    """None if the heading is unnumbered (\\section*{})."""
    weight: int
    location: Location

    @override
    def child_nodes(self) -> InlineScope:
        return self.title


HEADING_KINDS = ("section", "subsection", "subsubsection")


def heading_kind(weight: int) -> str:
    return HEADING_KINDS[weight - 1]


@dataclass(frozen=True)
class CodeBlock(Block):
    """A verbatim code listing. Never macro-expanded, never reflowed."""

    code: str
    location: Location


@dataclass(frozen=True)
class InlineCode(Inline):
    code: str


@dataclass(frozen=True)
class MathRow(UserNode, Block):
    """One line of a multi-line environment like align, numbered unless it had \\nonumber."""

    tex: str
    anchor: Anchor | None

    @override
    def child_nodes(self) -> None:
        return None


@dataclass(frozen=True)
class MathDisplay(UserNode, Block):
    tex: str
    anchor: Anchor | None
    """Non-None for single-line numbered environments like \\begin{equation}."""
    location: Location
    rows: Tuple[MathRow, ...] = ()
    """For align, eqnarray and gather: each line and its own number. Emitted by the MathDisplay."""

    @override
    def child_nodes(self) -> Tuple[MathRow, ...]:
        return self.rows


@dataclass(frozen=True)
class InlineMath(Inline):
    tex: str


@dataclass(frozen=True)
class LabelDeclaration(Block, Inline):
    """A \\label{key}. Names the anchor it was declared inside of.

    This is a Block when it stands on its own (e.g. straight after a \\section)
    and an Inline when it's in the middle of running text."""

    key: str
    target: Anchor
    location: Location


class ReferenceForm(Enum):
    Number = "ref"
    """\\ref{} - just the number, e.g. '3.2'"""
    Name = "autoref"
    """\\autoref{} - the name and number, e.g. 'Section 3.2'"""
    See = "see"
    """\\see{} - 'see Section 3.2'"""


@dataclass(frozen=True)
class ReferenceUse(Inline):
    key: str
    form: ReferenceForm
    location: Location


@dataclass(frozen=True)
class CitationUse(UserNode, Inline):
    keys: Tuple[str, ...]
    note: InlineScope | None
    location: Location
    anchor = None

    @override
    def child_nodes(self) -> InlineScope | None:
        return self.note


@dataclass(frozen=True)
class Footnote(UserNode, Inline):
    """A footnote mark in running text. The contents are emitted at the end of the chapter."""

    contents: InlineScope
    anchor: Anchor
    location: Location

    @override
    def child_nodes(self) -> InlineScope:
        return self.contents


class FormatType(Enum):
    Emph = "emph"
    Italic = "it"
    Bold = "bf"
    Typewriter = "tt"
    Slanted = "sl"
    Roman = "rm"


@dataclass(frozen=True)
class Formatted(UserNode, Inline):
    format_type: FormatType
    contents: InlineScope
    anchor = None

    @override
    def child_nodes(self) -> InlineScope:
        return self.contents


@dataclass(frozen=True)
class Link(UserNode, Inline):
    url: str
    label: InlineScope | None
    anchor = None

    @override
    def child_nodes(self) -> InlineScope | None:
        return self.label


class ListType(Enum):
    Itemize = "itemize"
    Enumerate = "enumerate"
    Description = "description"


@dataclass(frozen=True)
class ListItem(UserNode, Block):
    term: InlineScope | None
    contents: BlockScope
    anchor = None

    @override
    def child_nodes(self) -> Iterable[Block | Inline]:
        if self.term is not None:
            return (self.term, self.contents)
        return (self.contents,)


@dataclass(frozen=True)
class ItemList(UserNode, Block):
    list_type: ListType
    items: Tuple[ListItem, ...]
    anchor = None

    @override
    def child_nodes(self) -> Iterable[Block | Inline]:
        return self.items


@dataclass(frozen=True)
class Figure(UserNode, Block):
    anchor: Anchor
    contents: BlockScope
    caption: InlineScope | None
    location: Location

    @override
    def child_nodes(self) -> Iterable[Block | Inline]:
        if self.caption is not None:
            return (self.contents, self.caption)
        return (self.contents,)


@dataclass(frozen=True)
class Quote(UserNode, Block):
    contents: BlockScope
    anchor = None

    @override
    def child_nodes(self) -> Iterable[Block | Inline]:
        return (self.contents,)


@dataclass(frozen=True)
class CiteprocText(Inline):
    """Bibliography entry text already formatted by citeproc-py, once per output format."""

    plain: str
    html: str


@dataclass(frozen=True)
class BibEntry:
    key: str
    text: InlineScope
    location: Optional[Location]
    """None for entries which came from an external database rather than a \\bibitem."""


@dataclass(frozen=True)
class Bibliography(UserNode, Block):
    entries: Tuple[BibEntry, ...]
    anchor = None

    @override
    def child_nodes(self) -> Iterable[Block | Inline]:
        return tuple(e.text for e in self.entries)


class NavPosition(Enum):
    Header = "header"
    Footer = "footer"


@dataclass(frozen=True)
class NavigationMarker(Block):
    """Where a %**~header or %**~footer directive asked for chapter navigation links."""

    position: NavPosition
