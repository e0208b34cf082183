"""The phases of building a document:

1. Loading
   The table of contents names every chapter source in order. Each is read through the BuildSystem,
   and any external BibTeX databases are read alongside them.
2. Expanding
   Each chapter is macro-expanded into typed blocks, independently of every other chapter
   (so this is the phase that can run in parallel).
   Loading and expanding errors are collected across all chapters, so one run reports every broken chapter.
3. Resolving
   The chapters are assembled into a Document in TOC order, and a single DFS over it counts every anchor
   and collects every label and bibliography entry. Only then are references and citations resolved,
   so forward references work.
   Any error in phases 1-3 fails the build before anything is rendered.
4. Rendering
   A RenderSetup registers file jobs with the BuildSystem, and running the jobs writes the output files.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Type, Union

from gentle_build import Block, Inline
from gentle_build.build_system import BuildSystem, JobOutputFile
from gentle_build.config import BuildConfig, OutputFormat
from gentle_build.doc import Chapter, Document
from gentle_build.doc.dfs import DocumentDfsPass
from gentle_build.doc.loader import TableOfContents, load_chapters
from gentle_build.doc.nodes import BibEntry, ListItem, MathRow
from gentle_build.errors import BuildError, BuildFailed, BuildWarning
from gentle_build.expand import MacroExpander, expand_chapters
from gentle_build.render import RenderSetup
from gentle_build.render.html import HtmlSetup
from gentle_build.render.plain import PlainSetup
from gentle_build.resolve import Resolution, resolve_document
from gentle_build.resolve.bib_database import BibTexDatabase
from gentle_build.resolve.bibliography import attach_external_entries

MINIMAL_BIB_FILE = "references.bib"


@dataclass
class BuildResult:
    document: Document
    resolution: Resolution
    outputs: List[str] = field(default_factory=list)
    """Output-relative paths of every file written, in the order they were registered."""
    warnings: List[BuildWarning] = field(default_factory=list)
    bib_db: Optional[BibTexDatabase] = None


def make_render_setup(config: BuildConfig) -> RenderSetup:  # type: ignore[type-arg]
    if config.output_format == OutputFormat.Html:
        return HtmlSetup(split_chapters=config.split_chapters)
    return PlainSetup()


def check_renderable(
    document: Document, known_types: Iterable[Type[Union[Block, Inline]]]
) -> None:
    """Check every node in the document has an emitter, so rendering can't fail halfway through a file."""
    known = tuple(known_types)
    used: Set[type] = set()

    def note_type(node: object) -> None:
        # ListItems are emitted by their ItemList, MathRows by their MathDisplay
        if not isinstance(node, (Chapter, ListItem, MathRow)):
            used.add(type(node))

    DocumentDfsPass([(None, note_type)]).dfs_over_document(document)
    missing = {t for t in used if not issubclass(t, known)}
    if missing:
        raise RuntimeError(
            f"Some node types were not given renderers, but are used by the document: {missing}"
        )


def load_and_resolve(
    build_sys: BuildSystem, toc: TableOfContents, config: BuildConfig
) -> BuildResult:
    """Phases 1-3. Raises BuildFailed with every error found; nothing is rendered."""
    chapter_sources, load_errors = load_chapters(build_sys, toc, config.encoding)
    errors: List[BuildError] = list(load_errors)

    bib_db: Optional[BibTexDatabase] = None
    if config.bib_files:
        try:
            bib_db = BibTexDatabase(build_sys, config.bib_files, config.encoding)
        except BuildError as e:
            errors.append(e)

    expander = MacroExpander.from_config(config)
    expanded, markup_errors = expand_chapters(
        expander, chapter_sources, config.parallel_workers
    )
    errors.extend(markup_errors)
    if errors:
        raise BuildFailed(errors)

    warnings: List[BuildWarning] = []
    chapters: List[Chapter] = []
    for e in expanded:
        # No errors means every slot was filled
        assert e is not None
        chapters.append(e.chapter)
        warnings.extend(e.warnings)
    document = Document(chapters=tuple(chapters))

    external: List[BibEntry] = bib_db.bib_entries() if bib_db is not None else []
    resolution = resolve_document(
        document,
        bibliography_style=config.bibliography_style,
        external_entries=external,
    )
    document = attach_external_entries(document, resolution.citations.cited_external())
    return BuildResult(
        document=document, resolution=resolution, warnings=warnings, bib_db=bib_db
    )


def build(
    build_sys: BuildSystem,
    toc: TableOfContents,
    config: Optional[BuildConfig] = None,
) -> BuildResult:
    """Build every chapter of `toc` into the output format chosen by `config`.

    Settings from the TOC's `#build` lines take priority over `config`.
    Raises BuildFailed if anything failed to load, expand or resolve. In that case no job is registered,
    so no output file is created."""
    config = config if config is not None else BuildConfig()
    if toc.settings:
        config = config.with_overrides(toc.settings)
    else:
        config.validate()

    result = load_and_resolve(build_sys, toc, config)

    render_setup = make_render_setup(config)
    check_renderable(result.document, render_setup.known_node_types())

    before = set(build_sys.file_jobs)
    render_setup.register_file_generator_jobs(
        result.document, result.resolution, build_sys, config.output_file_name
    )
    bib_db = result.bib_db
    if config.emit_minimal_bib and bib_db is not None:
        used = {e.key for e in result.resolution.citations.cited_external()}

        def write_minimal_bib(out: JobOutputFile) -> None:
            with out.open_write_text(config.encoding) as f:
                bib_db.write_minimal_db(f, used)

        build_sys.register_file_generator(
            write_minimal_bib, output_relative_path=MINIMAL_BIB_FILE
        )
    build_sys.run_jobs()

    result.outputs = [p for p in build_sys.file_jobs if p not in before]
    return result
