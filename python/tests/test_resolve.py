import pytest

from gentle_build import SourceText
from gentle_build.config import BibliographyStyle
from gentle_build.doc import Document
from gentle_build.doc.anchors import Anchor
from gentle_build.doc.loader import ChapterSource
from gentle_build.doc.nodes import ReferenceForm
from gentle_build.errors import (
    BuildFailed,
    DuplicateCitationKeyError,
    DuplicateLabelError,
    UnresolvedCitationError,
    UnresolvedReferenceError,
)
from gentle_build.expand import MacroExpander
from gentle_build.resolve import resolve_document
from gentle_build.resolve.counters import STD_COUNTER_HIERARCHY, CounterState
from gentle_build.resolve.numbering import (
    LOWER_ROMAN_NUMBERING,
    STD_COUNTER_FORMATS,
    UPPER_ALPH_NUMBERING,
    enumerate_label,
)
from gentle_build.resolve.references import AnchorNumbering


def document(**chapters: str) -> Document:
    expander = MacroExpander()
    return Document(
        chapters=tuple(
            expander.expand(
                ChapterSource(chapter_id, f"{chapter_id}.tex", SourceText(chapter_id, text))
            ).chapter
            for chapter_id, text in chapters.items()
        )
    )


def test_counter_hierarchy_resets_children():
    state = CounterState(STD_COUNTER_HIERARCHY)
    s1 = Anchor("section", "a.1")
    ss1 = Anchor("subsection", "a.1")
    s2 = Anchor("section", "a.2")
    ss2 = Anchor("subsection", "a.2")
    for a in (s1, ss1, s2, ss2):
        state.count_anchor(a)
    assert state.anchor_counters[ss1] == (("section", 1), ("subsection", 1))
    assert state.anchor_counters[ss2] == (("section", 2), ("subsection", 1))


def test_counter_errors():
    state = CounterState(STD_COUNTER_HIERARCHY)
    with pytest.raises(ValueError):
        state.count_anchor(Anchor("table", "a.1"))
    state.count_anchor(Anchor("figure", "a.1"))
    with pytest.raises(ValueError):
        state.count_anchor(Anchor("figure", "a.1"))


def test_counter_declared_twice():
    with pytest.raises(RuntimeError):
        CounterState({"section": {"figure": {}}, "figure": {}})


def test_footnotes_restart_per_chapter_and_drop_their_parents():
    numbering = AnchorNumbering(STD_COUNTER_HIERARCHY, STD_COUNTER_FORMATS)
    numbering.count(Anchor("chapter", "a"), "a")
    numbering.count(Anchor("footnote", "a.1"), "a")
    numbering.count(Anchor("footnote", "a.2"), "a")
    numbering.count(Anchor("chapter", "b"), "b")
    numbering.count(Anchor("footnote", "b.1"), "b")
    assert numbering.number(Anchor("footnote", "a.2")) == "2"
    assert numbering.number(Anchor("footnote", "b.1")) == "1"
    assert numbering.name(Anchor("footnote", "b.1")) == "Footnote 1"
    assert numbering.name(Anchor("chapter", "b")) == "Chapter 2"


def test_anchor_numbering_needs_a_format_for_every_counter():
    with pytest.raises(ValueError):
        AnchorNumbering(STD_COUNTER_HIERARCHY, {"chapter": STD_COUNTER_FORMATS["chapter"]})


def test_numberings():
    assert LOWER_ROMAN_NUMBERING[4] == "iv"
    assert LOWER_ROMAN_NUMBERING[1994] == "mcmxciv"
    assert UPPER_ALPH_NUMBERING[2] == "B"
    assert enumerate_label(0, 3) == "3."
    assert enumerate_label(1, 2) == "(b)"
    assert enumerate_label(2, 4) == "iv."
    assert enumerate_label(7, 1) == "A."


def test_sections_are_numbered_across_chapters():
    doc = document(
        a="\\section{A}\\subsection{A1}\\label{a1}",
        b="\\section{B}\\subsection{B1}\\label{b1}\\subsubsection{B1a}\\label{b1a}",
    )
    res = resolve_document(doc)
    assert res.references.targets["a1"].number == "1.1"
    assert res.references.targets["b1"].name == "Section 2.1"
    assert res.references.targets["b1a"].number == "2.1.1"
    assert res.references.targets["b1a"].chapter_id == "b"


def test_figures_and_equations_are_numbered_through_the_document():
    doc = document(
        a="\\begin{figure}\\caption{X}\\label{f1}\\end{figure}\\begin{equation}x\\label{e1}\\end{equation}",
        b="\\begin{figure}\\label{f2}\\end{figure}\\begin{equation}y\\label{e2}\\end{equation}",
    )
    res = resolve_document(doc)
    assert res.references.targets["f2"].name == "Figure 2"
    assert res.references.targets["e1"].number == "1"
    assert res.references.targets["e2"].name == "Equation 2"


def test_reference_text_forms():
    doc = document(a="\\section{A}\\label{tut-a}")
    target = resolve_document(doc).references.targets["tut-a"]
    assert target.text_for(ReferenceForm.Number) == "1"
    assert target.text_for(ReferenceForm.Name) == "Section 1"
    assert target.text_for(ReferenceForm.See) == "see Section 1"


def test_label_before_any_section_names_the_chapter():
    doc = document(a="Text.", b="\\label{b-start}Intro.")
    target = resolve_document(doc).references.targets["b-start"]
    assert target.name == "Chapter 2"


def test_forward_references_resolve():
    doc = document(
        a="See \\ref{later}.",
        b="\\section{First}\\section{Later}\\label{later}",
    )
    res = resolve_document(doc)
    assert res.references.targets["later"].number == "2"


def test_unresolved_references_are_all_reported():
    doc = document(a="\\ref{nowhere}", b="\\autoref{missing} \\ref{nowhere}")
    with pytest.raises(BuildFailed) as e:
        resolve_document(doc)
    errors = e.value.of_type(UnresolvedReferenceError)
    assert [(err.key, err.location.chapter) for err in errors] == [
        ("nowhere", "a"),
        ("missing", "b"),
        ("nowhere", "b"),
    ]
    assert len(e.value.errors) == 3


def test_duplicate_labels_fail_before_references_are_checked():
    doc = document(a="\\section{A}\\label{x}", b="\\section{B}\\label{x} \\ref{missing}")
    with pytest.raises(BuildFailed) as e:
        resolve_document(doc)
    (err,) = e.value.errors
    assert isinstance(err, DuplicateLabelError)
    assert err.key == "x"
    assert err.location.chapter == "b"
    assert err.first.chapter == "a"


BIB_CHAPTER = (
    "See \\cite{bird98} and \\cite{huda89a}.\n\n"
    "\\begin{thebibliography}{9}\n"
    "\\bibitem{huda89a} P. Hudak.\n"
    "\\bibitem{bird98} R. Bird.\n"
    "\\bibitem{wadler} P. Wadler.\n"
    "\\end{thebibliography}"
)


def test_declaration_order_bibliography_numbers():
    res = resolve_document(document(refs=BIB_CHAPTER))
    assert res.citation_number("huda89a") == 1
    assert res.citation_number("bird98") == 2
    assert res.citation_number("wadler") == 3


def test_declaration_order_ignores_citation_order():
    swapped = BIB_CHAPTER.replace(
        "\\cite{bird98} and \\cite{huda89a}", "\\cite{huda89a} and \\cite{bird98}"
    )
    a = resolve_document(document(refs=BIB_CHAPTER))
    b = resolve_document(document(refs=swapped))
    assert a.citations.numbers == b.citations.numbers


def test_first_use_bibliography_numbers():
    res = resolve_document(
        document(refs=BIB_CHAPTER), bibliography_style=BibliographyStyle.FirstUse
    )
    assert res.citation_number("bird98") == 1
    assert res.citation_number("huda89a") == 2
    # Uncited entries come last
    assert res.citation_number("wadler") == 3


def test_citations_can_come_before_the_bibliography_chapter():
    doc = document(
        intro="As shown in \\cite{huda89a}.",
        refs=BIB_CHAPTER,
    )
    res = resolve_document(doc)
    assert res.citations.first_use == ["huda89a", "bird98"]


def test_unresolved_citation():
    with pytest.raises(BuildFailed) as e:
        resolve_document(document(refs=BIB_CHAPTER.replace("bird98} and", "nosuchkey} and")))
    (err,) = e.value.errors
    assert isinstance(err, UnresolvedCitationError)
    assert err.key == "nosuchkey"


def test_duplicate_bibliography_keys():
    dup = BIB_CHAPTER.replace("\\bibitem{wadler}", "\\bibitem{bird98}")
    with pytest.raises(BuildFailed) as e:
        resolve_document(document(refs=dup))
    (err,) = e.value.errors
    assert isinstance(err, DuplicateCitationKeyError)
    assert err.key == "bird98"


def test_resolution_is_deterministic():
    doc = document(
        a="\\section{A}\\label{a}\\footnote{x}\\cite{bird98}",
        refs=BIB_CHAPTER,
    )
    r1 = resolve_document(doc)
    r2 = resolve_document(doc)
    assert r1.references.targets == r2.references.targets
    assert r1.citations.numbers == r2.citations.numbers
