"""
Anchors are the numbered, linkable points of a document: chapters, headings, figures, equations, footnotes.

Labels aren't anchors - a \\label{} names whichever anchor it was declared inside of.
LaTeX does the same: "\\section{Modules}\\label{tut-modules}" labels the section counter,
"\\begin{figure}...\\label{fig}" labels the figure counter.
This lets the expander allocate anchors without knowing about labels at all,
and lets the resolver number anchors without knowing about the markup they came from.

Anchor IDs are allocated per chapter, so expanding one chapter never needs to know about any other chapter.
"""

import dataclasses
import re
from collections import defaultdict
from typing import Dict

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_.:-]")


@dataclasses.dataclass(frozen=True)
class Anchor:
    """A point in the document which can always be referred back to.

    Includes a kind, e.g. 'section', which selects the counter that numbers it, and a document-unique ID."""

    kind: str
    id: str

    def canonical(self) -> str:
        return f"{self.kind}:{self.id}"

    def html_id(self) -> str:
        return _UNSAFE_ID_CHARS.sub("-", f"{self.kind}-{self.id}")

    def __str__(self) -> str:
        return self.canonical()


class AnchorAllocator:
    """Creates anchors for a single chapter.

    IDs are "<chapter_id>.<n>" with a monotonic per-kind counter, so two chapters never collide
    and re-expanding the same source always produces the same IDs."""

    chapter_id: str
    _anchor_kind_counters: Dict[str, int]

    def __init__(self, chapter_id: str) -> None:
        self.chapter_id = chapter_id
        self._anchor_kind_counters = defaultdict(lambda: 1)

    def chapter_anchor(self) -> Anchor:
        return Anchor(kind="chapter", id=self.chapter_id)

    def new_anchor(self, kind: str) -> Anchor:
        n = self._anchor_kind_counters[kind]
        self._anchor_kind_counters[kind] += 1
        return Anchor(kind=kind, id=f"{self.chapter_id}.{n}")
