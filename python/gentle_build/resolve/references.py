"""The Reference Resolver.

Labels name anchors, anchors are numbered by the counters, and references look labels up.
Both phases are driven from resolve_document: every label is collected before any reference is resolved,
so a reference may appear before the label it refers to.
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple

from gentle_build.doc.anchors import Anchor
from gentle_build.doc.nodes import LabelDeclaration, ReferenceForm, ReferenceUse
from gentle_build.errors import (
    BuildError,
    DuplicateLabelError,
    UnresolvedReferenceError,
)
from gentle_build.resolve.counters import CounterHierarchy, CounterState
from gentle_build.resolve.numbering import SimpleCounterFormat


@dataclass(frozen=True)
class ResolvedTarget:
    key: str
    anchor: Anchor
    chapter_id: str
    """The chapter containing the anchor, so renderers can link across files."""
    number: str
    """e.g. '3.2'"""
    name: str
    """e.g. 'Section 3.2'"""

    def text_for(self, form: ReferenceForm) -> str:
        if form == ReferenceForm.Number:
            return self.number
        if form == ReferenceForm.Name:
            return self.name
        return f"see {self.name}"


class AnchorNumbering:
    """Counts anchors in document order and formats their numbers."""

    counters: CounterState
    formats: Dict[str, SimpleCounterFormat]
    anchor_chapters: Dict[Anchor, str]

    def __init__(
        self, hierarchy: CounterHierarchy, formats: Dict[str, SimpleCounterFormat]
    ) -> None:
        self.counters = CounterState(hierarchy)
        missing = set(self.counters.anchor_kinds()).difference(formats)
        if missing:
            raise ValueError(f"No counter format for anchor kinds {sorted(missing)}")
        self.formats = formats
        self.anchor_chapters = {}

    def count(self, anchor: Anchor, chapter_id: str) -> None:
        self.counters.count_anchor(anchor)
        self.anchor_chapters[anchor] = chapter_id

    def _chain(self, anchor: Anchor) -> List[Tuple[SimpleCounterFormat, int]]:
        values = self.counters.anchor_counters[anchor]
        return [(self.formats[kind], value) for kind, value in values]

    def number(self, anchor: Anchor) -> str:
        return SimpleCounterFormat.resolve(self._chain(anchor), with_name=False)

    def name(self, anchor: Anchor) -> str:
        return SimpleCounterFormat.resolve(self._chain(anchor), with_name=True)


class ReferenceTable:
    """Every label in the document, and what each one resolves to."""

    labels: Dict[str, LabelDeclaration]
    targets: Dict[str, ResolvedTarget]

    def __init__(self) -> None:
        self.labels = {}
        self.targets = {}

    def declare(self, label: LabelDeclaration, errors: List[BuildError]) -> None:
        first = self.labels.get(label.key)
        if first is not None:
            errors.append(DuplicateLabelError(label.key, label.location, first.location))
            return
        self.labels[label.key] = label

    def resolve_targets(self, numbering: AnchorNumbering) -> None:
        for key, label in self.labels.items():
            self.targets[key] = ResolvedTarget(
                key=key,
                anchor=label.target,
                chapter_id=numbering.anchor_chapters[label.target],
                number=numbering.number(label.target),
                name=numbering.name(label.target),
            )

    def check_use(
        self, use: ReferenceUse, errors: List[BuildError]
    ) -> None:
        if use.key not in self.targets:
            errors.append(UnresolvedReferenceError(use.key, use.location))

    def lookup(self, use: ReferenceUse) -> ResolvedTarget:
        return self.targets[use.key]
