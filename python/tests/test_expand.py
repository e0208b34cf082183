import pytest

from gentle_build import BlockScope, InlineScope, LineBreak, Paragraph, Passthrough, SourceText, Text
from gentle_build.doc.anchors import Anchor
from gentle_build.doc.loader import ChapterSource
from gentle_build.doc.nodes import (
    Bibliography,
    CitationUse,
    CodeBlock,
    Figure,
    Footnote,
    Formatted,
    FormatType,
    Heading,
    InlineCode,
    ItemList,
    LabelDeclaration,
    Link,
    ListType,
    MathDisplay,
    NavigationMarker,
    NavPosition,
    Quote,
    ReferenceForm,
    ReferenceUse,
)
from gentle_build.errors import MalformedMarkupError, MarkupError, UnknownMacroError
from gentle_build.expand import ExpandedChapter, MacroExpander, expand_chapters
from gentle_build.expand.macros import MacroTable, std_macro_table


def source(text: str, chapter_id: str = "intro") -> ChapterSource:
    return ChapterSource(chapter_id, f"{chapter_id}.tex", SourceText(chapter_id, text))


def expand(text: str, chapter_id: str = "intro", **kwargs) -> ExpandedChapter:
    return MacroExpander(**kwargs).expand(source(text, chapter_id))


def blocks(text: str, **kwargs):
    return expand(text, **kwargs).chapter.contents.contents


def para(*inls) -> Paragraph:
    return Paragraph(InlineScope(tuple(inls)))


def test_paragraphs_split_on_blank_lines():
    assert blocks("First  para\ncontinues.\n\nSecond.") == (
        para(Text("First para continues.")),
        para(Text("Second.")),
    )


def test_heading_and_label_after_it():
    (heading, label, p) = blocks("\\section{Modules}\\label{tut-modules}\nModules are great.")
    assert heading == Heading(
        title=InlineScope((Text("Modules"),)),
        anchor=Anchor("section", "intro.1"),
        weight=1,
        location=heading.location,
    )
    assert isinstance(label, LabelDeclaration)
    assert label.key == "tut-modules"
    assert label.target == Anchor("section", "intro.1")
    assert p == para(Text("Modules are great."))


def test_label_before_any_heading_targets_the_chapter():
    (label,) = blocks("\\label{start}")
    assert label.target == Anchor("chapter", "intro")


def test_starred_heading_is_unnumbered_and_keeps_the_label_target():
    (s1, s2, label) = blocks("\\section{One}\n\n\\section*{Aside}\n\n\\label{x}")
    assert s1.anchor == Anchor("section", "intro.1")
    assert s2.anchor is None
    assert label.target == Anchor("section", "intro.1")


def test_subsection_weights_and_anchor_ids():
    hs = blocks("\\section{A}\\subsection{B}\\subsubsection{C}\\subsection{D}")
    assert [(h.weight, h.anchor) for h in hs] == [
        (1, Anchor("section", "intro.1")),
        (2, Anchor("subsection", "intro.1")),
        (3, Anchor("subsubsection", "intro.1")),
        (2, Anchor("subsection", "intro.2")),
    ]


def test_label_inside_heading_title_targets_that_heading():
    (heading,) = blocks("\\section{Modules\\label{m}}")
    (text, label) = heading.title.contents
    assert text == Text("Modules")
    assert label.target == heading.anchor


def test_references_and_see_prefix():
    (p,) = blocks("\\ref{a} \\autoref{b} \\see{modules}")
    refs = [i for i in p.contents if isinstance(i, ReferenceUse)]
    assert [(r.key, r.form) for r in refs] == [
        ("a", ReferenceForm.Number),
        ("b", ReferenceForm.Name),
        ("tut-modules", ReferenceForm.See),
    ]


def test_see_prefix_is_configurable():
    (p,) = blocks("\\see{modules}", reference_prefix="")
    assert p.contents.contents[0].key == "modules"


def test_citations_with_notes_and_multiple_keys():
    (p,) = blocks("\\cite{a, b} \\cite[p.~3]{c}")
    c1, _space, c2 = p.contents.contents
    assert isinstance(c1, CitationUse)
    assert c1.keys == ("a", "b")
    assert c1.note is None
    assert c2.keys == ("c",)
    assert c2.note == InlineScope((Text("p. 3"),))


def test_footnote_gets_its_own_anchor_and_labels():
    (p,) = blocks("Text\\footnote{A note.\\label{fn}} more.")
    text, fn, more = p.contents.contents
    assert text == Text("Text")
    assert isinstance(fn, Footnote)
    assert fn.anchor == Anchor("footnote", "intro.1")
    assert fn.contents.contents[0] == Text("A note.")
    assert fn.contents.contents[1].target == fn.anchor
    assert more == Text(" more.")


def test_inline_code_and_code_blocks():
    (p, code) = blocks("Use @map f xs@ here.\n\\bprog\nmap f [] = []\n\\eprog")
    assert p == para(Text("Use "), InlineCode("map f xs"), Text(" here."))
    assert isinstance(code, CodeBlock)
    assert code.code == "map f [] = []"


def test_numbered_equation_labels():
    (math, label) = blocks("\\begin{equation}x = 1\\label{eq:x}\\end{equation}")
    assert isinstance(math, MathDisplay)
    assert math.tex == "x = 1"
    assert math.anchor == Anchor("equation", "intro.1")
    assert label.key == "eq:x"
    assert label.target == math.anchor


def test_align_numbers_each_line():
    (math, *labels) = blocks(
        "\\begin{align}\n"
        "x &= 1 \\label{eq:x} \\\\\n"
        "y &= \\begin{cases} 1 \\\\ 2 \\end{cases} \\nonumber \\\\[2pt]\n"
        "z &= 3 \\label{eq:z} \\\\\n"
        "\\end{align}"
    )
    assert isinstance(math, MathDisplay)
    assert math.anchor is None
    assert [row.tex for row in math.rows] == [
        "x &= 1",
        "y &= \\begin{cases} 1 \\\\ 2 \\end{cases}",
        "z &= 3",
    ]
    assert [row.anchor for row in math.rows] == [
        Anchor("equation", "intro.1"),
        None,
        Anchor("equation", "intro.2"),
    ]
    assert math.tex.startswith("\\begin{aligned}x &= 1 \\\\ y")
    assert [(label.key, label.target) for label in labels] == [
        ("eq:x", Anchor("equation", "intro.1")),
        ("eq:z", Anchor("equation", "intro.2")),
    ]


def test_format_macros_and_declarations():
    (p,) = blocks("\\emph{a} {\\bf b c} d")
    assert p == para(
        Formatted(FormatType.Emph, InlineScope((Text("a"),))),
        Text(" "),
        InlineScope((Formatted(FormatType.Bold, InlineScope((Text("b c"),))),)),
        Text(" d"),
    )


def test_links_and_line_breaks():
    (p,) = blocks("\\url{http://haskell.org}\\\\\\href{http://x.org}{X}")
    assert p == para(
        Link("http://haskell.org", None),
        LineBreak(),
        Link("http://x.org", InlineScope((Text("X"),))),
    )


def test_urls_may_contain_at_and_percent():
    (p,) = blocks("Mail \\url{mailto:haskell@haskell.org} or \\href{http://x.org/a%20b\\#top}{@x@}.")
    assert p == para(
        Text("Mail "),
        Link("mailto:haskell@haskell.org", None),
        Text(" or "),
        Link("http://x.org/a%20b#top", InlineScope((InlineCode("x"),))),
        Text("."),
    )


def test_ignored_macros_and_symbols():
    (p,) = blocks("\\noindent See \\S 3\\index{sections}\\ldots")
    assert p == para(Text("See \u00a73\u2026"))


def test_lists():
    (lst,) = blocks(
        "\\begin{enumerate}\n\\item One\n\\item Two\n\n still two\n\\end{enumerate}"
    )
    assert isinstance(lst, ItemList)
    assert lst.list_type == ListType.Enumerate
    assert [item.contents.contents for item in lst.items] == [
        (para(Text("One")),),
        (para(Text("Two")), para(Text("still two"))),
    ]


def test_description_list_terms():
    (lst,) = blocks("\\begin{description}\\item[Lazy] evaluation\\end{description}")
    (item,) = lst.items
    assert item.term == InlineScope((Text("Lazy"),))
    assert item.contents.contents == (para(Text("evaluation")),)


def test_item_outside_a_list_is_an_error():
    with pytest.raises(MalformedMarkupError):
        blocks("\\item stray")


def test_figure_caption_and_label():
    (fig,) = blocks(
        "\\begin{figure}[htbp]\n\\bprog\nx\n\\eprog\n\\caption{A figure}\\label{fig:x}\n\\end{figure}"
    )
    assert isinstance(fig, Figure)
    assert fig.anchor == Anchor("figure", "intro.1")
    assert fig.caption == InlineScope((Text("A figure"),))
    (code, label) = fig.contents.contents
    assert isinstance(code, CodeBlock)
    assert label.target == fig.anchor


def test_caption_outside_figure_is_an_error():
    with pytest.raises(MalformedMarkupError):
        blocks("\\caption{Nope}")


def test_quote_and_center():
    (q, centered) = blocks(
        "\\begin{quote}Quoted.\\end{quote}\\begin{center}Centered.\\end{center}"
    )
    assert isinstance(q, Quote)
    assert q.contents.contents == (para(Text("Quoted.")),)
    assert centered.contents == (para(Text("Centered.")),)


def test_thebibliography():
    (bib,) = blocks(
        "\\begin{thebibliography}{9}\n"
        "\\bibitem{huda89a} P. Hudak. Conception.\n"
        "\\bibitem[Bird]{bird98} R. Bird.\n\n Introduction.\n"
        "\\end{thebibliography}"
    )
    assert isinstance(bib, Bibliography)
    assert [(e.key, e.text) for e in bib.entries] == [
        ("huda89a", InlineScope((Text("P. Hudak. Conception."),))),
        ("bird98", InlineScope((Text("R. Bird. Introduction."),))),
    ]
    assert bib.entries[0].location is not None


def test_directives_set_title_and_navigation():
    e = expand("%**<title>The Intro</title>\n%**~header\nHi.\n%**~footer\n%**other\n")
    assert e.chapter.title == "The Intro"
    assert e.chapter.contents.contents == (
        NavigationMarker(NavPosition.Header),
        para(Text("Hi.")),
        NavigationMarker(NavPosition.Footer),
    )


def test_title_falls_back_to_first_heading_then_chapter_id():
    assert expand("\\section{Getting \\emph{Started}}").chapter.title == "Getting Started"
    assert expand("No headings.", chapter_id="misc").chapter.title == "misc"


def test_unknown_macro_is_an_error_when_strict():
    with pytest.raises(UnknownMacroError) as e:
        expand("Hello \\frobnicate{x}")
    assert e.value.macro == "\\frobnicate"
    assert e.value.location is not None
    assert e.value.location.column == 7


def test_unknown_macro_passes_through_when_not_strict():
    e = expand("Hello \\frobnicate[a]{x}{y} there", strict_macros=False)
    assert e.chapter.contents.contents == (
        para(Text("Hello "), Passthrough("\\frobnicate[a]{x}{y}"), Text(" there")),
    )
    (w,) = e.warnings
    assert "frobnicate" in w.message
    assert w.diagnostic().startswith("intro:1:7: Warning: ")


def test_unknown_environment():
    with pytest.raises(UnknownMacroError):
        expand("\\begin{tabular}x\\end{tabular}")
    e = expand("\\begin{tabular}x\\end{tabular}", strict_macros=False)
    assert e.chapter.contents.contents == (
        para(Passthrough("\\begin{tabular}")),
        BlockScope((para(Text("x")),)),
        para(Passthrough("\\end{tabular}")),
    )
    assert len(e.warnings) == 1


@pytest.mark.parametrize(
    "text",
    [
        "\\emph{unclosed",
        "stray }",
        "\\end{itemize}",
        "\\begin{quote} never closed",
        "\\emph{\\section{no}}",
        "\\label{}",
        "\\cite{ , }",
        "\\section",
    ],
)
def test_malformed_markup(text: str):
    with pytest.raises(MalformedMarkupError):
        expand(text)


def test_expansion_is_deterministic():
    text = "\\section{A}\\label{a}\nText\\footnote{n}.\n\n\\begin{figure}x\\end{figure}"
    assert expand(text) == expand(text)


def test_macro_table_conflicts():
    table = MacroTable()
    table.register_inline("foo", lambda p, tok: None)
    with pytest.raises(RuntimeError):
        table.register_block("foo", lambda p, tok: None)
    table.register_environment("env", lambda p, tok: None)
    with pytest.raises(RuntimeError):
        table.register_environment("env", lambda p, tok: None)


def test_std_macro_table_has_no_conflicts():
    table = std_macro_table()
    assert "section" in set(table.macro_names())
    assert table.get_environment("thebibliography") is not None


def test_expand_chapters_keeps_toc_order_and_collects_errors():
    sources = [
        source("\\section{A}", "a"),
        None,
        source("\\bad", "b"),
        source("\\section{C}", "c"),
    ]
    for workers in (1, 3):
        results, errors = expand_chapters(MacroExpander(), sources, workers)
        assert [r.chapter.id if r else None for r in results] == ["a", None, None, "c"]
        assert len(errors) == 1
        assert isinstance(errors[0], MarkupError)
        assert errors[0].location is not None
        assert errors[0].location.chapter == "b"
