from typing import Callable, List, Optional

from gentle_build import Block, Text
from gentle_build.build_system import BuildSystem, JobOutputFile
from gentle_build.doc import Document
from gentle_build.doc.nodes import (
    Bibliography,
    CitationUse,
    CiteprocText,
    CodeBlock,
    Figure,
    Footnote,
    Formatted,
    Heading,
    InlineCode,
    InlineMath,
    ItemList,
    Link,
    ListType,
    MathDisplay,
    NavigationMarker,
    Quote,
    ReferenceUse,
)
from gentle_build.render import EmitterDispatch, Renderer, RenderSetup
from gentle_build.resolve import Resolution
from gentle_build.resolve.bibliography import REFERENCES_TITLE
from gentle_build.resolve.numbering import enumerate_label

# Underline characters for headings, by weight
HEADING_UNDERLINES = {1: "=", 2: "-"}


class PlainRenderer(Renderer):
    """Renders chapters as plain text, for terminals and diffing."""

    enumerate_depth: int = 0
    """How many enumerate lists the current item is nested inside of."""

    def emit_text(self, t: Text) -> None:
        self.emit_raw(t.text)

    def emit_line_break(self) -> None:
        self.emit_newline()

    def is_silent(self, b: Block) -> bool:
        return super().is_silent(b) or isinstance(b, NavigationMarker)

    def emit_heading(self, h: Heading) -> None:
        # Render the title to a string first so the underline can match its length
        line = self._capture(lambda: self.emit(h.title))
        if h.anchor is not None:
            line = f"{self.resolution.anchors.number(h.anchor)} {line}"
        self.emit_raw(line)
        underline = HEADING_UNDERLINES.get(h.weight)
        if underline:
            self.emit_newline()
            self.emit_raw(underline * len(line))

    def _capture(self, emit: Callable[[], None]) -> str:
        parts: List[str] = []

        class _Collect:
            def write(self, s: str, /) -> int:
                parts.append(s)
                return len(s)

        old_write_to, old_need_indent = self.write_to, self._need_indent
        self.write_to, self._need_indent = _Collect(), False
        try:
            emit()
        finally:
            self.write_to, self._need_indent = old_write_to, old_need_indent
        return "".join(parts)

    def emit_verbatim_lines(self, text: str) -> None:
        with self.indent(4):
            self.emit_join(self.emit_raw, text.split("\n"), self.emit_newline)

    def emit_math_display(self, m: MathDisplay) -> None:
        if m.rows:
            lines = []
            for row in m.rows:
                if row.anchor is not None:
                    lines.append(f"{row.tex}    ({self.resolution.anchors.number(row.anchor)})")
                else:
                    lines.append(row.tex)
            self.emit_verbatim_lines("\n".join(lines))
            return
        text = m.tex.strip()
        if m.anchor is not None:
            text += f"    ({self.resolution.anchors.number(m.anchor)})"
        self.emit_verbatim_lines(text)

    def emit_formatted(self, f: Formatted) -> None:
        self.emit(f.contents)

    def emit_link(self, link: Link) -> None:
        if link.label is None:
            self.emit_raw(link.url)
        else:
            self.emit(link.label)
            self.emit_raw(f" <{link.url}>")

    def emit_reference(self, r: ReferenceUse) -> None:
        self.emit_raw(self.resolution.target(r).text_for(r.form))

    def emit_citation(self, c: CitationUse) -> None:
        nums = [str(self.resolution.citation_number(k)) for k in c.keys]
        self.emit_raw("[" + ", ".join(nums))
        if c.note is not None:
            self.emit_raw(", ")
            self.emit(c.note)
        self.emit_raw("]")

    def emit_footnote_mark(self, fn: Footnote) -> None:
        self.queue_footnote(fn)
        self.emit_raw(f"[^{self.footnote_number(fn)}]")

    def emit_footnote_contents(self, fn: Footnote) -> None:
        self.emit_raw(f"[^{self.footnote_number(fn)}] ")
        self.emit(fn.contents)

    def emit_list(self, lst: ItemList) -> None:
        is_enumerate = lst.list_type == ListType.Enumerate
        if is_enumerate:
            self.enumerate_depth += 1
        try:
            for i, item in enumerate(lst.items, start=1):
                if i > 1:
                    self.emit_newline()
                if is_enumerate:
                    bullet = enumerate_label(self.enumerate_depth - 1, i)
                elif lst.list_type == ListType.Itemize:
                    bullet = "*"
                else:
                    bullet = ""
                if item.term is not None:
                    term = self._capture(lambda: self.emit(item.term))  # type: ignore[arg-type]
                    bullet = f"{bullet} {term}:".strip()
                self.emit_raw(bullet + " ")
                with self.indent(len(bullet) + 1):
                    self.emit_join(
                        self.emit_block,
                        [b for b in item.contents if not self.is_silent(b)],
                        self.emit_newline,
                    )
        finally:
            if is_enumerate:
                self.enumerate_depth -= 1

    def emit_figure(self, f: Figure) -> None:
        self.emit_blockscope(f.contents)
        if f.contents.contents:
            self.emit_break_paragraph()
        self.emit_raw(self.resolution.anchors.name(f.anchor))
        if f.caption is not None:
            self.emit_raw(": ")
            self.emit(f.caption)

    def emit_quote(self, q: Quote) -> None:
        with self.indent(4):
            self.emit_blockscope(q.contents)

    def emit_bibliography(self, b: Bibliography) -> None:
        self.emit_raw(REFERENCES_TITLE)
        self.emit_newline()
        self.emit_raw("-" * len(REFERENCES_TITLE))
        for entry in self.resolution.citations.sorted_entries(b.entries):
            self.emit_newline()
            self.emit_raw(f"[{self.resolution.citation_number(entry.key)}] ")
            self.emit(entry.text)

    def emit_chapter_title(self, title: str) -> None:
        self.emit_raw(title)
        self.emit_newline()
        self.emit_raw("#" * len(title))
        self.emit_break_paragraph()

    def emit_document(self, doc: Document) -> None:
        first = True
        for chapter in doc:
            if not first:
                self.emit_break_paragraph()
            first = False
            self.emit_chapter_title(chapter.title)
            self.emit_chapter(chapter)
        self.emit_newline()

    @classmethod
    def default_emitter_dispatch(
        cls: type["PlainRenderer"],
    ) -> EmitterDispatch["PlainRenderer"]:
        emitter = super().default_emitter_dispatch()
        emitter.register_block_or_inline(Heading, lambda h, r: r.emit_heading(h))
        emitter.register_block_or_inline(
            CodeBlock, lambda c, r: r.emit_verbatim_lines(c.code)
        )
        emitter.register_block_or_inline(InlineCode, lambda c, r: r.emit_raw(c.code))
        emitter.register_block_or_inline(MathDisplay, lambda m, r: r.emit_math_display(m))
        emitter.register_block_or_inline(InlineMath, lambda m, r: r.emit_raw(m.tex))
        emitter.register_block_or_inline(Formatted, lambda f, r: r.emit_formatted(f))
        emitter.register_block_or_inline(Link, lambda link, r: r.emit_link(link))
        emitter.register_block_or_inline(ReferenceUse, lambda ref, r: r.emit_reference(ref))
        emitter.register_block_or_inline(CitationUse, lambda c, r: r.emit_citation(c))
        emitter.register_block_or_inline(ItemList, lambda lst, r: r.emit_list(lst))
        emitter.register_block_or_inline(Figure, lambda f, r: r.emit_figure(f))
        emitter.register_block_or_inline(Quote, lambda q, r: r.emit_quote(q))
        emitter.register_block_or_inline(Bibliography, lambda b, r: r.emit_bibliography(b))
        emitter.register_block_or_inline(CiteprocText, lambda t, r: r.emit_raw(t.plain))
        # Navigation only makes sense with links. is_silent() keeps these out of the output.
        emitter.register_block_or_inline(NavigationMarker, lambda n, r: None)
        return emitter


class PlainSetup(RenderSetup[PlainRenderer]):
    emitter: EmitterDispatch[PlainRenderer]

    def __init__(self) -> None:
        self.emitter = PlainRenderer.default_emitter_dispatch()

    @property
    def default_output_file_name(self) -> str:
        return "document.txt"

    def register_file_generator_jobs(
        self,
        document: Document,
        resolution: Resolution,
        build_sys: BuildSystem,
        output_file_name: Optional[str],
    ) -> None:
        def render_job(out: JobOutputFile) -> None:
            with out.open_write_text() as write_to:
                PlainRenderer(document, resolution, self.emitter, write_to).emit_document(
                    document
                )

        build_sys.register_file_generator(
            render_job,
            output_relative_path=output_file_name or self.default_output_file_name,
        )
