import pytest

from gentle_build.build_system import InMemoryBuildSystem
from gentle_build.doc.loader import (
    TableOfContents,
    TocEntry,
    chapter_id_for,
    load_chapters,
)
from gentle_build.errors import LoadError

TOC = """\
# The Gentle Introduction
#build reference_prefix = tut-
#build strict_macros=false

intro.tex
goodies.tex
   # indented comment
mods = chapters/modules-v2.tex
"""


def test_parse_toc():
    toc = TableOfContents.parse(TOC)
    assert toc.entries == [
        TocEntry("intro", "intro.tex"),
        TocEntry("goodies", "goodies.tex"),
        TocEntry("mods", "chapters/modules-v2.tex"),
    ]
    assert toc.settings == {"reference_prefix": "tut-", "strict_macros": "false"}


@pytest.mark.parametrize(
    "path,chapter_id",
    [
        ("intro.tex", "intro"),
        ("chapters/io.tex", "io"),
        ("chapters\\io.tex", "io"),
        ("type classes.tex", "type-classes"),
        ("noext", "noext"),
    ],
)
def test_chapter_ids_from_paths(path, chapter_id):
    assert chapter_id_for(path) == chapter_id


def test_load_chapters_in_toc_order():
    build_sys = InMemoryBuildSystem.from_text({"b.tex": "B", "a.tex": "A"})
    sources, errors = load_chapters(build_sys, TableOfContents.from_paths(["b.tex", "a.tex"]))
    assert errors == []
    assert [s.chapter_id for s in sources if s] == ["b", "a"]
    assert [s.text for s in sources if s] == ["B", "A"]


def test_load_errors_leave_empty_slots():
    build_sys = InMemoryBuildSystem.from_text({"a.tex": "A", "c.tex": "C"})
    toc = TableOfContents.from_paths(["a.tex", "b.tex", "c.tex"])
    sources, errors = load_chapters(build_sys, toc)
    assert [s is None for s in sources] == [False, True, False]
    assert len(errors) == 1
    assert isinstance(errors[0], LoadError)
    assert errors[0].path == "b.tex"


def test_duplicate_chapter_ids():
    build_sys = InMemoryBuildSystem.from_text({"a.tex": "A", "other/a.tex": "A2"})
    toc = TableOfContents.from_paths(["a.tex", "other/a.tex"])
    sources, errors = load_chapters(build_sys, toc)
    assert sources[1] is None
    assert len(errors) == 1
    assert "'a'" in str(errors[0])
