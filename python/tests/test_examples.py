from pathlib import Path

from gentle_build.build_system import SimpleBuildSystem
from gentle_build.config import BuildConfig, OutputFormat
from gentle_build.doc.loader import TableOfContents
from gentle_build.system import MINIMAL_BIB_FILE, build

GENTLE_DIR = Path(__file__).parents[2] / "examples" / "gentle"


def build_gentle(tmp_path: Path, config: BuildConfig) -> Path:
    toc = TableOfContents.parse((GENTLE_DIR / "toc.txt").read_text(encoding="utf-8"))
    build(SimpleBuildSystem(GENTLE_DIR, tmp_path), toc, config)
    return tmp_path


def test_gentle_example_plain(tmp_path: Path):
    out = build_gentle(
        tmp_path,
        BuildConfig(output_format=OutputFormat.Plain, bib_files=["extra.bib"], emit_minimal_bib=True),
    )
    text = (out / "document.txt").read_text(encoding="utf-8")
    assert "Modules are discussed in see Section 3." in text
    assert "described further in see Section 2.1." in text
    assert "Figure 1 defines a type of trees" in text
    assert "supplement to the Haskell Report [4]" in text
    assert "see [5]." in text
    assert "[5] Philip Wadler. Monads for functional programming." in text

    bib = (out / MINIMAL_BIB_FILE).read_text(encoding="utf-8")
    assert "wadler95" in bib
    assert "hughes89" not in bib


def test_gentle_example_split_html(tmp_path: Path):
    out = build_gentle(tmp_path, BuildConfig(split_chapters=True, bib_files=["extra.bib"]))
    assert sorted(p.name for p in out.iterdir()) == [
        "goodies.html",
        "index.html",
        "intro.html",
        "modules.html",
        "refs.html",
    ]
    intro = (out / "intro.html").read_text(encoding="utf-8")
    assert '<a href="modules.html#section-modules.1">see Section 3</a>' in intro
    assert '<a href="refs.html#cite-haskell-98">4</a>' in intro
