"""The Bibliography Resolver: collects bibliography entries, then resolves every citation against them."""

import dataclasses
from typing import Any, Dict, List, Sequence, Set, Tuple

from gentle_build import BlockScope
from gentle_build.config import BibliographyStyle
from gentle_build.doc import Chapter, Document
from gentle_build.doc.anchors import Anchor
from gentle_build.doc.dfs import DocumentDfsPass
from gentle_build.doc.nodes import BibEntry, Bibliography, CitationUse
from gentle_build.errors import (
    BuildError,
    DuplicateCitationKeyError,
    UnresolvedCitationError,
)


class CitationTable:
    style: BibliographyStyle
    entries: Dict[str, BibEntry]
    """Document entries in declaration order. Insertion order is significant."""
    external: Dict[str, BibEntry]
    """Entries from external databases, in file order. Only the cited ones are used."""
    first_use: List[str]
    """Keys in order of first citation."""
    numbers: Dict[str, int]

    def __init__(self, style: BibliographyStyle) -> None:
        self.style = style
        self.entries = {}
        self.external = {}
        self.first_use = []
        self.numbers = {}

    def declare(
        self, entry: BibEntry, errors: List[BuildError]
    ) -> None:
        if entry.key in self.entries:
            errors.append(DuplicateCitationKeyError(entry.key, entry.location))
            return
        self.entries[entry.key] = entry

    def add_external(
        self, entries: Sequence[BibEntry], errors: List[BuildError]
    ) -> None:
        for entry in entries:
            if entry.key in self.entries:
                # Report it at the \bibitem, which has a location
                errors.append(
                    DuplicateCitationKeyError(entry.key, self.entries[entry.key].location)
                )
            else:
                self.external[entry.key] = entry

    def cite(self, use: CitationUse, errors: List[BuildError]) -> None:
        for key in use.keys:
            if key not in self.entries and key not in self.external:
                errors.append(UnresolvedCitationError(key, use.location))
            elif key not in self.first_use:
                self.first_use.append(key)

    def cited_external(self) -> List[BibEntry]:
        """The external entries which were cited, in file order."""
        cited = set(self.first_use)
        return [e for k, e in self.external.items() if k in cited]

    def assign_numbers(self) -> None:
        """Number every entry that will be printed. Must be called after every citation has been seen."""
        declared = list(self.entries.keys()) + [e.key for e in self.cited_external()]
        if self.style == BibliographyStyle.FirstUse:
            used: Set[str] = set(self.first_use)
            order = list(self.first_use) + [k for k in declared if k not in used]
        else:
            order = declared
        self.numbers = {key: i for i, key in enumerate(order, start=1)}

    def number(self, key: str) -> int:
        return self.numbers[key]

    def sorted_entries(self, entries: Sequence[BibEntry]) -> List[BibEntry]:
        """Sort some entries into the order of their numbers, for rendering a bibliography block."""
        return sorted(entries, key=lambda e: self.numbers[e.key])


REFERENCES_TITLE = "References"


def _replace_node(node: Any, old: Any, new: Any) -> Any:
    """Rebuild the frozen tree under `node` with `old` swapped for `new`. Returns `node` itself if `old` isn't under it."""
    if node is old:
        return new
    if isinstance(node, tuple):
        items = tuple(_replace_node(n, old, new) for n in node)
        if any(a is not b for a, b in zip(items, node)):
            return items
        return node
    if dataclasses.is_dataclass(node) and not isinstance(node, type):
        changes = {}
        for f in dataclasses.fields(node):
            if not f.init:
                continue
            value = getattr(node, f.name)
            replaced = _replace_node(value, old, new)
            if replaced is not value:
                changes[f.name] = replaced
        if changes:
            return dataclasses.replace(node, **changes)
    return node


def attach_external_entries(document: Document, entries: Sequence[BibEntry]) -> Document:
    """Add cited external entries to the document.

    They go on the end of the last bibliography in the document, however deeply it's nested,
    or into an extra References chapter if the document doesn't have one."""
    if not entries:
        return document

    current: List[Chapter] = []
    last: List[Tuple[Chapter, Bibliography]] = []
    DocumentDfsPass(
        [
            (Chapter, current.append),
            (Bibliography, lambda b: last.append((current[-1], b))),
        ]
    ).dfs_over_document(document)
    if last:
        chapter, bib = last[-1]
        extended = Bibliography(entries=bib.entries + tuple(entries))
        return document.replace_chapter(_replace_node(chapter, bib, extended))

    existing_ids = {c.id for c in document}
    chapter_id = "references"
    n = 2
    while chapter_id in existing_ids:
        chapter_id = f"references-{n}"
        n += 1
    return document.with_chapter(
        Chapter(
            id=chapter_id,
            title=REFERENCES_TITLE,
            source_name="",
            anchor=Anchor("chapter", chapter_id),
            contents=BlockScope((Bibliography(entries=tuple(entries)),)),
        )
    )
