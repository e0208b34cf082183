"""Two-phase resolution of a whole document.

Phase 1 walks the document once, counting every anchor and collecting every label and bibliography entry.
Duplicate declarations are reported at the end of phase 1, before any use is looked at.
Phase 2 resolves every reference and citation, collecting all the failures before reporting them.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from gentle_build.config import BibliographyStyle
from gentle_build.doc import Chapter, Document
from gentle_build.doc.anchors import Anchor
from gentle_build.doc.dfs import DocumentDfsPass
from gentle_build.doc.nodes import (
    BibEntry,
    Bibliography,
    CitationUse,
    LabelDeclaration,
    ReferenceUse,
)
from gentle_build.errors import BuildError, BuildFailed
from gentle_build.resolve.bibliography import CitationTable
from gentle_build.resolve.counters import STD_COUNTER_HIERARCHY, CounterHierarchy
from gentle_build.resolve.numbering import STD_COUNTER_FORMATS, SimpleCounterFormat
from gentle_build.resolve.references import (
    AnchorNumbering,
    ReferenceTable,
    ResolvedTarget,
)


@dataclass
class Resolution:
    """The side tables produced by resolution. The document itself is never modified."""

    anchors: AnchorNumbering
    references: ReferenceTable
    citations: CitationTable

    def target(self, use: ReferenceUse) -> ResolvedTarget:
        return self.references.lookup(use)

    def citation_number(self, key: str) -> int:
        return self.citations.number(key)


def resolve_document(
    document: Document,
    bibliography_style: BibliographyStyle = BibliographyStyle.Declaration,
    external_entries: Sequence[BibEntry] = (),
    hierarchy: Optional[CounterHierarchy] = None,
    formats: Optional[Dict[str, SimpleCounterFormat]] = None,
) -> Resolution:
    """Resolve every reference and citation in the document.

    Raises BuildFailed carrying every error found."""
    anchors = AnchorNumbering(
        hierarchy if hierarchy is not None else STD_COUNTER_HIERARCHY,
        formats if formats is not None else STD_COUNTER_FORMATS,
    )
    references = ReferenceTable()
    citations = CitationTable(bibliography_style)

    # Phase 1: collect declarations
    declaration_errors: List[BuildError] = []
    reference_uses: List[ReferenceUse] = []
    citation_uses: List[CitationUse] = []
    chapter_id = ""

    def enter_chapter(c: Chapter) -> None:
        nonlocal chapter_id
        chapter_id = c.id

    def count_anchor(node: object) -> None:
        anchor = getattr(node, "anchor", None)
        if isinstance(anchor, Anchor):
            anchors.count(anchor, chapter_id)

    def collect_bibliography(b: Bibliography) -> None:
        for entry in b.entries:
            citations.declare(entry, declaration_errors)

    DocumentDfsPass(
        [
            (Chapter, enter_chapter),
            (None, count_anchor),
            (
                LabelDeclaration,
                lambda label: references.declare(label, declaration_errors),
            ),
            (Bibliography, collect_bibliography),
            (ReferenceUse, reference_uses.append),
            (CitationUse, citation_uses.append),
        ]
    ).dfs_over_document(document)
    citations.add_external(external_entries, declaration_errors)

    if declaration_errors:
        raise BuildFailed(declaration_errors)

    # Phase 2: resolve uses
    references.resolve_targets(anchors)
    use_errors: List[BuildError] = []
    for ref in reference_uses:
        references.check_use(ref, use_errors)
    for cite in citation_uses:
        citations.cite(cite, use_errors)
    if use_errors:
        raise BuildFailed(use_errors)

    citations.assign_numbers()
    return Resolution(anchors=anchors, references=references, citations=citations)
