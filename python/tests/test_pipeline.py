from pathlib import Path
from typing import Dict

import pytest

from gentle_build.build_system import InMemoryBuildSystem, SimpleBuildSystem
from gentle_build.config import BibliographyStyle, BuildConfig, OutputFormat
from gentle_build.doc.loader import TableOfContents
from gentle_build.doc.nodes import Bibliography, Quote
from gentle_build.errors import (
    BuildFailed,
    ConfigError,
    DuplicateLabelError,
    LoadError,
    MalformedMarkupError,
    UnknownMacroError,
    UnresolvedCitationError,
    UnresolvedReferenceError,
)
from gentle_build.system import MINIMAL_BIB_FILE, BuildResult, build

MODULES = "%**<title>Modules</title>\n\\section{Modules}\\label{tut-modules}\nHaskell has modules."
LATER = "%**<title>Later</title>\nAs described earlier, \\see{modules}."

BIBLIOGRAPHY = (
    "\\begin{thebibliography}{9}\n"
    "\\bibitem{huda89a} P. Hudak. Conception, evolution, and application of functional programming languages.\n"
    "\\bibitem{bird98} R. Bird. Introduction to Functional Programming using Haskell.\n"
    "\\end{thebibliography}"
)

EXTERNAL_BIB = """\
@book{wadler,
  author = {Philip Wadler},
  title = {Monads for functional programming},
  publisher = {Springer},
  year = {1995}
}

@article{unused,
  author = {Nobody},
  title = {Never cited},
  journal = {Nowhere},
  year = {2000}
}
"""


def run(
    files: Dict[str, str], toc: TableOfContents | None = None, **config
) -> tuple[InMemoryBuildSystem, BuildResult]:
    build_sys = InMemoryBuildSystem.from_text(files)
    if toc is None:
        toc = TableOfContents.from_paths([f for f in files if f.endswith(".tex")])
    result = build(build_sys, toc, BuildConfig(**config))
    return build_sys, result


def run_failing(files: Dict[str, str], **config) -> tuple[InMemoryBuildSystem, BuildFailed]:
    build_sys = InMemoryBuildSystem.from_text(files)
    toc = TableOfContents.from_paths([f for f in files if f.endswith(".tex")])
    with pytest.raises(BuildFailed) as e:
        build(build_sys, toc, BuildConfig(**config))
    return build_sys, e.value


def test_see_links_to_section_in_earlier_chapter():
    build_sys, result = run({"modules.tex": MODULES, "later.tex": LATER})
    assert result.outputs == ["document.html"]
    html = build_sys.get_text_outputs()["document.html"]
    assert '<a href="#section-modules.1">see Section 1</a>' in html


def test_building_twice_gives_identical_output():
    files = {"modules.tex": MODULES, "later.tex": LATER, "refs.tex": BIBLIOGRAPHY}
    for output_format in OutputFormat:
        a, _ = run(files, output_format=output_format)
        b, _ = run(files, output_format=output_format)
        assert a.get_outputs() == b.get_outputs()


def test_forward_reference_to_later_chapter():
    build_sys, _ = run(
        {
            "first.tex": "Modules are covered in \\see{modules}.",
            "second.tex": "\\section{Intro}\\section{Modules}\\label{tut-modules}",
        },
        output_format=OutputFormat.Plain,
    )
    assert "Modules are covered in see Section 2." in build_sys.get_text_outputs()["document.txt"]


def test_unresolved_reference_writes_nothing():
    build_sys, failed = run_failing({"a.tex": "Text.\n\nSee \\ref{nowhere}."})
    (err,) = failed.errors
    assert isinstance(err, UnresolvedReferenceError)
    assert err.key == "nowhere"
    assert err.location is not None
    assert (err.location.chapter, err.location.line) == ("a", 3)
    assert build_sys.get_outputs() == {}
    assert build_sys.file_jobs == {}


def test_duplicate_label_fails_before_resolution():
    build_sys, failed = run_failing(
        {
            "a.tex": "\\section{A}\\label{dup}",
            "b.tex": "\\section{B}\\label{dup} \\ref{also-missing}",
        }
    )
    assert [type(e) for e in failed.errors] == [DuplicateLabelError]
    assert build_sys.get_outputs() == {}


def test_bibliography_numbering_doesnt_depend_on_citation_order():
    def numbers(text: str) -> str:
        build_sys, _ = run(
            {"intro.tex": text, "refs.tex": BIBLIOGRAPHY}, output_format=OutputFormat.Plain
        )
        return build_sys.get_text_outputs()["document.txt"]

    a = numbers("\\cite{bird98} then \\cite{huda89a}.")
    b = numbers("\\cite{huda89a} then \\cite{bird98}.")
    assert "[2] then [1]." in a
    assert "[1] then [2]." in b
    for text in (a, b):
        assert "[1] P. Hudak." in text
        assert "[2] R. Bird." in text


def test_first_use_bibliography_style_from_config():
    build_sys, result = run(
        {"intro.tex": "\\cite{bird98}", "refs.tex": BIBLIOGRAPHY},
        output_format=OutputFormat.Plain,
        bibliography_style=BibliographyStyle.FirstUse,
    )
    text = build_sys.get_text_outputs()["document.txt"]
    assert "[1]\n" in text
    assert text.index("[1] R. Bird.") < text.index("[2] P. Hudak.")


def test_unknown_citation_key_fails_with_one_error_and_no_output():
    build_sys, failed = run_failing(
        {"intro.tex": "See \\cite{nosuchkey}.", "refs.tex": BIBLIOGRAPHY}
    )
    assert len(failed.errors) == 1
    assert isinstance(failed.errors[0], UnresolvedCitationError)
    assert failed.errors[0].key == "nosuchkey"
    assert build_sys.get_outputs() == {}


def test_errors_from_every_chapter_are_reported_together():
    build_sys, failed = run_failing(
        {
            "a.tex": "\\frobnicate",
            "b.tex": "fine",
            "c.tex": "@unterminated",
        }
    )
    assert [type(e) for e in failed.errors] == [UnknownMacroError, MalformedMarkupError]
    assert [e.location.chapter for e in failed.errors] == ["a", "c"]
    assert build_sys.get_outputs() == {}


def test_missing_chapter_is_a_load_error():
    build_sys = InMemoryBuildSystem.from_text({"a.tex": "A."})
    with pytest.raises(BuildFailed) as e:
        build(build_sys, TableOfContents.from_paths(["a.tex", "missing.tex"]))
    (err,) = e.value.errors
    assert isinstance(err, LoadError)
    assert err.path == "missing.tex"


def test_bad_encoding_is_a_load_error():
    build_sys = InMemoryBuildSystem({"a.tex": b"caf\xe9"})
    with pytest.raises(BuildFailed) as e:
        build(build_sys, TableOfContents.from_paths(["a.tex"]))
    assert isinstance(e.value.errors[0], LoadError)

    build(build_sys, TableOfContents.from_paths(["a.tex"]), BuildConfig(encoding="latin-1"))
    assert "café" in build_sys.get_text_outputs()["document.html"]


def test_non_strict_macros_produce_warnings():
    _, result = run({"a.tex": "Hello \\frobnicate{x}."}, strict_macros=False)
    (w,) = result.warnings
    assert w.location is not None
    assert w.location.chapter == "a"


def test_toc_settings_override_config():
    files = {
        "one.tex": "\\section{One}\\label{ref-one}",
        "two.tex": "\\see{one}",
    }
    toc = TableOfContents.parse("#build reference_prefix=ref-\n#build output_format=plain\none.tex\ntwo.tex\n")
    build_sys, result = run(files, toc=toc, reference_prefix="tut-")
    assert result.outputs == ["document.txt"]
    assert "see Section 1" in build_sys.get_text_outputs()["document.txt"]


def test_toc_settings_are_validated():
    toc = TableOfContents.parse("#build no_such_setting=1\na.tex\n")
    with pytest.raises(ConfigError):
        build(InMemoryBuildSystem.from_text({"a.tex": "A."}), toc)


def test_parallel_expansion_gives_the_same_output():
    files = {f"c{i}.tex": f"\\section{{S{i}}}\\label{{s{i}}}\nSee \\ref{{s{(i + 1) % 6}}}." for i in range(6)}
    serial, _ = run(files)
    parallel, _ = run(files, parallel_workers=4)
    assert serial.get_outputs() == parallel.get_outputs()


def test_external_bib_entries_join_the_documents_bibliography():
    build_sys, result = run(
        {
            "intro.tex": "\\cite{wadler} and \\cite{bird98}.",
            "refs.tex": BIBLIOGRAPHY,
            "refs.bib": EXTERNAL_BIB,
        },
        output_format=OutputFormat.Plain,
        bib_files=["refs.bib"],
    )
    text = build_sys.get_text_outputs()["document.txt"]
    assert "[3] and [2]." in text
    assert "[3] Philip Wadler. Monads for functional programming" in text
    assert "1995." in text
    assert "Nobody" not in text
    (bib,) = [b for b in result.document.chapter("refs").contents if isinstance(b, Bibliography)]
    assert [e.key for e in bib.entries] == ["huda89a", "bird98", "wadler"]


def test_external_bib_entries_join_a_nested_bibliography():
    _, result = run(
        {
            "intro.tex": "\\cite{wadler}.",
            "refs.tex": "\\begin{quote}\n" + BIBLIOGRAPHY + "\n\\end{quote}",
            "refs.bib": EXTERNAL_BIB,
        },
        bib_files=["refs.bib"],
    )
    assert [c.id for c in result.document] == ["intro", "refs"]
    (quote,) = [b for b in result.document.chapter("refs").contents if isinstance(b, Quote)]
    (bib,) = [b for b in quote.contents if isinstance(b, Bibliography)]
    assert [e.key for e in bib.entries] == ["huda89a", "bird98", "wadler"]


def test_external_bib_entries_get_their_own_chapter():
    build_sys, result = run(
        {"intro.tex": "\\cite{wadler}.", "refs.bib": EXTERNAL_BIB},
        bib_files=["refs.bib"],
        emit_minimal_bib=True,
    )
    assert [c.id for c in result.document] == ["intro", "references"]
    assert result.outputs == ["document.html", MINIMAL_BIB_FILE]
    outputs = build_sys.get_text_outputs()
    assert '<a href="#cite-wadler">1</a>' in outputs["document.html"]
    assert "Monads for functional programming" in outputs["document.html"]
    assert "@book{wadler" in outputs[MINIMAL_BIB_FILE]
    assert "unused" not in outputs[MINIMAL_BIB_FILE]


def test_document_keys_clash_with_external_keys():
    _, failed = run_failing(
        {"refs.tex": BIBLIOGRAPHY.replace("bird98", "wadler"), "refs.bib": EXTERNAL_BIB},
        bib_files=["refs.bib"],
    )
    assert len(failed.errors) == 1
    assert failed.errors[0].location is not None


def test_missing_bib_file_is_reported_with_chapter_errors():
    _, failed = run_failing(
        {"a.tex": "\\frobnicate"},
        bib_files=["missing.bib"],
    )
    assert [type(e) for e in failed.errors] == [LoadError, UnknownMacroError]


def test_real_files(tmp_path: Path):
    project = tmp_path / "project"
    project.mkdir()
    (project / "modules.tex").write_text(MODULES, encoding="utf-8")
    (project / "later.tex").write_text(LATER, encoding="utf-8")
    out = tmp_path / "out"

    build_sys = SimpleBuildSystem(project, out)
    toc = TableOfContents.from_paths(["modules.tex", "later.tex"])
    build(build_sys, toc, BuildConfig(split_chapters=True))
    assert sorted(p.name for p in out.iterdir()) == ["index.html", "later.html", "modules.html"]
    assert "modules.html#section-modules.1" in (out / "later.html").read_text(encoding="utf-8")


def test_failed_build_creates_no_output_directory(tmp_path: Path):
    project = tmp_path / "project"
    project.mkdir()
    (project / "a.tex").write_text("\\ref{nowhere}", encoding="utf-8")
    out = tmp_path / "out"

    with pytest.raises(BuildFailed):
        build(SimpleBuildSystem(project, out), TableOfContents.from_paths(["a.tex"]))
    assert not out.exists()
