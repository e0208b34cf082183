"""The Macro Expander: turns one chapter's source into typed blocks.

Expansion is purely local to a chapter, so chapters can be expanded in any order or in parallel.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from gentle_build import plain_text
from gentle_build.config import BuildConfig
from gentle_build.doc import Chapter
from gentle_build.doc.loader import ChapterSource
from gentle_build.doc.nodes import Heading
from gentle_build.errors import BuildWarning, MarkupError
from gentle_build.expand.lexer import tokenize
from gentle_build.expand.macros import MacroTable, std_macro_table
from gentle_build.expand.parser import ChapterParser


@dataclass(frozen=True)
class ExpandedChapter:
    chapter: Chapter
    warnings: Tuple[BuildWarning, ...] = ()


class MacroExpander:
    table: MacroTable
    strict_macros: bool
    reference_prefix: str

    def __init__(
        self,
        table: Optional[MacroTable] = None,
        strict_macros: bool = True,
        reference_prefix: str = "tut-",
    ) -> None:
        self.table = table if table is not None else std_macro_table()
        self.strict_macros = strict_macros
        self.reference_prefix = reference_prefix

    @classmethod
    def from_config(cls, config: BuildConfig) -> "MacroExpander":
        return cls(
            strict_macros=config.strict_macros,
            reference_prefix=config.reference_prefix,
        )

    def expand(self, source: ChapterSource) -> ExpandedChapter:
        """Expand a single chapter.

        Raises MarkupError (UnknownMacroError or MalformedMarkupError) for this chapter only."""
        tokens = tokenize(source.source)
        parser = ChapterParser(
            source.source,
            tokens,
            self.table,
            strict_macros=self.strict_macros,
            reference_prefix=self.reference_prefix,
        )
        contents = parser.parse_chapter()

        title = parser.title
        if title is None:
            # Fall back to the first heading, then the chapter id
            title = next(
                (plain_text(b.title) for b in contents if isinstance(b, Heading)),
                source.chapter_id,
            )

        chapter = Chapter(
            id=source.chapter_id,
            title=title,
            source_name=source.path,
            anchor=parser.anchors.chapter_anchor(),
            contents=contents,
        )
        return ExpandedChapter(chapter=chapter, warnings=tuple(parser.warnings))


def expand_chapters(
    expander: MacroExpander,
    sources: Sequence[Optional[ChapterSource]],
    parallel_workers: int = 1,
) -> Tuple[List[Optional[ExpandedChapter]], List[MarkupError]]:
    """Expand every chapter which loaded successfully.

    Each chapter's result (or error) is written into its own slot, so the output is in TOC order
    regardless of which worker finished first. A chapter which failed leaves None in its slot."""
    results: List[Optional[ExpandedChapter]] = [None] * len(sources)
    errors: List[Optional[MarkupError]] = [None] * len(sources)

    def expand_slot(i: int) -> None:
        source = sources[i]
        if source is None:
            return
        try:
            results[i] = expander.expand(source)
        except MarkupError as e:
            errors[i] = e

    if parallel_workers > 1 and len(sources) > 1:
        with ThreadPoolExecutor(max_workers=parallel_workers) as pool:
            # list() propagates any unexpected exception from a worker
            list(pool.map(expand_slot, range(len(sources))))
    else:
        for i in range(len(sources)):
            expand_slot(i)

    return results, [e for e in errors if e is not None]
