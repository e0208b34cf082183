import html
from contextlib import contextmanager
from typing import Dict, Generator, List, Optional, Tuple

from gentle_build import InlineScope, Paragraph, Text
from gentle_build.build_system import BuildSystem, JobOutputFile
from gentle_build.doc import Chapter, Document
from gentle_build.doc.anchors import Anchor
from gentle_build.doc.dfs import DocumentDfsPass
from gentle_build.doc.nodes import (
    Bibliography,
    CitationUse,
    CiteprocText,
    CodeBlock,
    Figure,
    Footnote,
    Formatted,
    FormatType,
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
from gentle_build.render import EmitterDispatch, Renderer, RenderSetup, Writable
from gentle_build.resolve import Resolution
from gentle_build.resolve.bibliography import REFERENCES_TITLE

FORMAT_TAGS: Dict[FormatType, Tuple[str, Optional[str]]] = {
    FormatType.Emph: ("em", None),
    FormatType.Italic: ("i", None),
    FormatType.Bold: ("b", None),
    FormatType.Typewriter: ("code", None),
    FormatType.Slanted: ("span", 'class="slanted"'),
    FormatType.Roman: ("span", 'class="roman"'),
}


def cite_html_id(key: str) -> str:
    return Anchor("cite", key).html_id()


class HtmlRenderer(Renderer):
    """Renders chapters as HTML.

    `chapter_files` maps each chapter id to the file it's written into,
    so references into other chapters can link across files when chapters are split."""

    chapter_files: Dict[str, str]
    bib_entry_chapters: Dict[str, str]
    current_file: str
    contents_file: str
    """The file holding the table of contents, which navigation links point back to."""

    def __init__(
        self,
        document: Document,
        resolution: Resolution,
        handlers: EmitterDispatch["HtmlRenderer"],
        write_to: Writable,
        chapter_files: Dict[str, str],
        bib_entry_chapters: Dict[str, str],
        current_file: str,
        contents_file: str,
    ) -> None:
        super().__init__(document, resolution, handlers, write_to)
        self.chapter_files = chapter_files
        self.bib_entry_chapters = bib_entry_chapters
        self.current_file = current_file
        self.contents_file = contents_file

    def emit_text(self, t: Text) -> None:
        self.emit_raw(html.escape(t.text, quote=False))

    def emit_line_break(self) -> None:
        self.emit_raw("<br>")

    @contextmanager
    def emit_tag(
        self, tag: str, props: str | None = None, indent: int = 0
    ) -> Generator[None, None, None]:
        if props:
            self.emit_raw(f"<{tag} {props}>")
        else:
            self.emit_raw(f"<{tag}>")

        try:
            if indent:
                with self.indent(indent):
                    self.emit_newline()
                    yield
                self.emit_newline()
            else:
                yield
        finally:
            self.emit_raw(f"</{tag}>")

    def href_for(self, chapter_id: str, html_id: str) -> str:
        target_file = self.chapter_files[chapter_id]
        if target_file == self.current_file:
            return f"#{html_id}"
        return f"{target_file}#{html_id}"

    def emit_url(self, url: str, label: Optional[InlineScope]) -> None:
        with self.emit_tag("a", f'href="{html.escape(url)}"'):
            if label is None:
                self.emit_text(Text(url))
            else:
                self.emit(label)

    def emit_paragraph(self, p: Paragraph) -> None:
        with self.emit_tag("p"):
            super().emit_paragraph(p)

    def emit_chapter(self, chapter: Chapter) -> None:
        with self.emit_tag(
            "section", f'class="chapter" id="{chapter.anchor.html_id()}"', indent=2
        ):
            super().emit_chapter(chapter)

    def emit_heading(self, h: Heading) -> None:
        tag = f"h{h.weight + 1}"
        props = f'id="{h.anchor.html_id()}"' if h.anchor is not None else None
        with self.emit_tag(tag, props):
            if h.anchor is not None:
                with self.emit_tag("span", 'class="number"'):
                    self.emit_raw(self.resolution.anchors.number(h.anchor))
                self.emit_raw(" ")
            self.emit(h.title)

    def emit_code_block(self, c: CodeBlock) -> None:
        # The code has to be emitted in one go so the indent isn't applied inside the <pre>
        self.emit_raw(f"<pre><code>{html.escape(c.code, quote=False)}</code></pre>")

    def emit_math_display(self, m: MathDisplay) -> None:
        props = 'class="math display"'
        if m.anchor is not None:
            props += f' id="{m.anchor.html_id()}"'
        with self.emit_tag("div", props):
            self.emit_raw(f"\\[{html.escape(m.tex, quote=False)}\\]")
            if m.anchor is not None:
                with self.emit_tag("span", 'class="eqno"'):
                    self.emit_raw(f"({self.resolution.anchors.number(m.anchor)})")
            for row in m.rows:
                # One number per line, each a link target of its own
                if row.anchor is not None:
                    number = self.resolution.anchors.number(row.anchor)
                    with self.emit_tag("span", f'class="eqno" id="{row.anchor.html_id()}"'):
                        self.emit_raw(f"({number})")

    def emit_formatted(self, f: Formatted) -> None:
        tag, props = FORMAT_TAGS[f.format_type]
        with self.emit_tag(tag, props):
            self.emit(f.contents)

    def emit_reference(self, r: ReferenceUse) -> None:
        target = self.resolution.target(r)
        href = self.href_for(target.chapter_id, target.anchor.html_id())
        self.emit_url(href, InlineScope((Text(target.text_for(r.form)),)))

    def emit_citation(self, c: CitationUse) -> None:
        self.emit_raw("[")
        first = True
        for key in c.keys:
            if not first:
                self.emit_raw(", ")
            first = False
            href = self.href_for(self.bib_entry_chapters[key], cite_html_id(key))
            self.emit_url(href, InlineScope((Text(str(self.resolution.citation_number(key))),)))
        if c.note is not None:
            self.emit_raw(", ")
            self.emit(c.note)
        self.emit_raw("]")

    def emit_footnote_mark(self, fn: Footnote) -> None:
        self.queue_footnote(fn)
        num = self.footnote_number(fn)
        with self.emit_tag("sup", f'class="footnote-ref" id="ref-{fn.anchor.html_id()}"'):
            self.emit_raw(f'<a href="#{fn.anchor.html_id()}">{num}</a>')

    def emit_footnote_contents(self, fn: Footnote) -> None:
        num = self.footnote_number(fn)
        with self.emit_tag("p", f'class="footnote" id="{fn.anchor.html_id()}"'):
            self.emit_raw(f"<sup>{num}</sup> ")
            self.emit(fn.contents)
            self.emit_raw(
                f' <a class="footnote-backref" href="#ref-{fn.anchor.html_id()}">↩</a>'
            )

    def emit_footnotes(self) -> None:
        if self.pending_footnotes:
            self.emit_break_paragraph()
            with self.emit_tag("div", 'class="footnotes"', indent=2):
                while self.pending_footnotes:
                    footnotes = self.pending_footnotes
                    self.pending_footnotes = []
                    self.emit_join(self.emit_footnote_contents, footnotes, self.emit_newline)
                    if self.pending_footnotes:
                        self.emit_newline()

    def emit_list(self, lst: ItemList) -> None:
        if lst.list_type == ListType.Description:
            with self.emit_tag("dl", indent=2):
                for i, item in enumerate(lst.items):
                    if i:
                        self.emit_newline()
                    with self.emit_tag("dt"):
                        if item.term is not None:
                            self.emit(item.term)
                    self.emit_newline()
                    with self.emit_tag("dd"):
                        self.emit_blockscope(item.contents)
            return
        tag = "ol" if lst.list_type == ListType.Enumerate else "ul"
        with self.emit_tag(tag, indent=2):
            for i, item in enumerate(lst.items):
                if i:
                    self.emit_newline()
                with self.emit_tag("li"):
                    if item.term is not None:
                        with self.emit_tag("b"):
                            self.emit(item.term)
                        self.emit_raw(" ")
                    self.emit_blockscope(item.contents)

    def emit_figure(self, f: Figure) -> None:
        with self.emit_tag("figure", f'id="{f.anchor.html_id()}"', indent=2):
            self.emit_blockscope(f.contents)
            self.emit_newline()
            with self.emit_tag("figcaption"):
                self.emit_raw(self.resolution.anchors.name(f.anchor))
                if f.caption is not None:
                    self.emit_raw(": ")
                    self.emit(f.caption)

    def emit_quote(self, q: Quote) -> None:
        with self.emit_tag("blockquote", indent=2):
            self.emit_blockscope(q.contents)

    def emit_bibliography(self, b: Bibliography) -> None:
        self.emit_raw(f"<h2>{REFERENCES_TITLE}</h2>")
        self.emit_newline()
        with self.emit_tag("dl", 'class="bibliography"', indent=2):
            entries = self.resolution.citations.sorted_entries(b.entries)
            for i, entry in enumerate(entries):
                if i:
                    self.emit_newline()
                num = self.resolution.citation_number(entry.key)
                self.emit_raw(f'<dt id="{cite_html_id(entry.key)}">[{num}]</dt>')
                self.emit_newline()
                with self.emit_tag("dd"):
                    self.emit(entry.text)

    def emit_navigation(self, n: NavigationMarker) -> None:
        assert self.current_chapter is not None
        prev_ch, next_ch = self.document.neighbours(self.current_chapter.id)
        links: List[str] = []
        if prev_ch is not None:
            links.append(self._nav_link(prev_ch, "prev", "Previous"))
        links.append(f'<a class="nav-top" href="{self._contents_href()}">Contents</a>')
        if next_ch is not None:
            links.append(self._nav_link(next_ch, "next", "Next"))
        with self.emit_tag("nav", f'class="chapter-nav {n.position.value}"'):
            self.emit_raw(" | ".join(links))

    def _nav_link(self, chapter: Chapter, rel: str, label: str) -> str:
        href = self.href_for(chapter.id, chapter.anchor.html_id())
        title = html.escape(chapter.title)
        return f'<a class="nav-{rel}" rel="{rel}" href="{href}">{label}: {title}</a>'

    def _contents_href(self) -> str:
        if self.current_file == self.contents_file:
            return "#contents"
        return f"{self.contents_file}#contents"

    def emit_contents(self, doc: Document) -> None:
        """The table of contents: a list of links to every chapter."""
        with self.emit_tag("nav", 'id="contents"', indent=2):
            with self.emit_tag("ol", indent=2):
                self.emit_join(
                    lambda c: self.emit_raw(
                        f'<li><a href="{self.href_for(c.id, c.anchor.html_id())}">{html.escape(c.title)}</a></li>'
                    ),
                    doc,
                    self.emit_newline,
                )

    def emit_page(self, title: str, chapters: List[Chapter], with_contents: bool) -> None:
        self.emit_raw("<!DOCTYPE html>")
        self.emit_newline()
        with self.emit_tag("html", indent=2):
            with self.emit_tag("head", indent=2):
                self.emit_raw('<meta charset="utf-8">')
                self.emit_newline()
                self.emit_raw(f"<title>{html.escape(title)}</title>")
            self.emit_newline()
            with self.emit_tag("body", indent=2):
                if with_contents:
                    self.emit_contents(self.document)
                    if chapters:
                        self.emit_break_paragraph()
                self.emit_join(self.emit_chapter, chapters, self.emit_break_paragraph)
        self.emit_newline()

    @classmethod
    def default_emitter_dispatch(
        cls: type["HtmlRenderer"],
    ) -> EmitterDispatch["HtmlRenderer"]:
        emitter = super().default_emitter_dispatch()
        emitter.register_block_or_inline(Heading, lambda h, r: r.emit_heading(h))
        emitter.register_block_or_inline(CodeBlock, lambda c, r: r.emit_code_block(c))
        emitter.register_block_or_inline(
            InlineCode,
            lambda c, r: r.emit_raw(f"<code>{html.escape(c.code, quote=False)}</code>"),
        )
        emitter.register_block_or_inline(MathDisplay, lambda m, r: r.emit_math_display(m))
        emitter.register_block_or_inline(
            InlineMath,
            lambda m, r: r.emit_raw(
                f'<span class="math">\\({html.escape(m.tex, quote=False)}\\)</span>'
            ),
        )
        emitter.register_block_or_inline(Formatted, lambda f, r: r.emit_formatted(f))
        emitter.register_block_or_inline(Link, lambda link, r: r.emit_url(link.url, link.label))
        emitter.register_block_or_inline(ReferenceUse, lambda ref, r: r.emit_reference(ref))
        emitter.register_block_or_inline(CitationUse, lambda c, r: r.emit_citation(c))
        emitter.register_block_or_inline(ItemList, lambda lst, r: r.emit_list(lst))
        emitter.register_block_or_inline(Figure, lambda f, r: r.emit_figure(f))
        emitter.register_block_or_inline(Quote, lambda q, r: r.emit_quote(q))
        emitter.register_block_or_inline(Bibliography, lambda b, r: r.emit_bibliography(b))
        # The citeproc formatter produces HTML
        emitter.register_block_or_inline(CiteprocText, lambda t, r: r.emit_raw(t.html))
        emitter.register_block_or_inline(
            NavigationMarker, lambda n, r: r.emit_navigation(n)
        )
        return emitter


CONTENTS_FILE = "index.html"


def split_chapter_files(document: Document) -> Dict[str, str]:
    """Give each chapter its own file, renaming any that would overwrite the contents page or each other."""
    taken = {CONTENTS_FILE}
    files = {}
    for c in document:
        stem = c.id
        # Compare case-insensitively so the output can live on any filesystem
        while f"{stem}.html".lower() in taken:
            stem += "-chapter"
        taken.add(f"{stem}.html".lower())
        files[c.id] = f"{stem}.html"
    return files


class HtmlSetup(RenderSetup[HtmlRenderer]):
    split_chapters: bool
    emitter: EmitterDispatch[HtmlRenderer]

    def __init__(self, split_chapters: bool = False) -> None:
        self.split_chapters = split_chapters
        self.emitter = HtmlRenderer.default_emitter_dispatch()

    @property
    def default_output_file_name(self) -> str:
        return "document.html"

    def register_file_generator_jobs(
        self,
        document: Document,
        resolution: Resolution,
        build_sys: BuildSystem,
        output_file_name: Optional[str],
    ) -> None:
        single_file = output_file_name or self.default_output_file_name
        if self.split_chapters:
            chapter_files = split_chapter_files(document)
        else:
            chapter_files = {c.id: single_file for c in document}

        # Citations link to whichever chapter holds the bibliography entry
        bib_entry_chapters: Dict[str, str] = {}
        current: List[str] = []

        def note_entries(b: Bibliography) -> None:
            for e in b.entries:
                bib_entry_chapters[e.key] = current[-1]

        DocumentDfsPass(
            [
                (Chapter, lambda c: current.append(c.id)),
                (Bibliography, note_entries),
            ]
        ).dfs_over_document(document)

        def make_job(
            out_name: str, title: str, chapters: List[Chapter], with_contents: bool
        ) -> None:
            # Make a render job and register it in the build system.
            def render_job(out: JobOutputFile) -> None:
                with out.open_write_text() as write_to:
                    renderer = HtmlRenderer(
                        document,
                        resolution,
                        self.emitter,
                        write_to,
                        chapter_files=chapter_files,
                        bib_entry_chapters=bib_entry_chapters,
                        current_file=out_name,
                        contents_file=contents_file,
                    )
                    renderer.emit_page(title, chapters, with_contents)

            build_sys.register_file_generator(
                render_job, output_relative_path=out_name
            )

        contents_file = CONTENTS_FILE if self.split_chapters else single_file
        doc_title = document.chapters[0].title if len(document) else ""
        if self.split_chapters:
            make_job(CONTENTS_FILE, doc_title, [], with_contents=True)
            for c in document:
                make_job(chapter_files[c.id], c.title, [c], with_contents=False)
        else:
            make_job(single_file, doc_title, list(document), with_contents=True)
