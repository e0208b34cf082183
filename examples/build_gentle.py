import argparse
from pathlib import Path

from gentle_build.build_system import SimpleBuildSystem
from gentle_build.config import BuildConfig, OutputFormat
from gentle_build.doc.loader import TableOfContents
from gentle_build.errors import BuildFailed
from gentle_build.system import build

if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("-o", "--output-dir", type=str, default="./examples/output/")
    parser.add_argument("--split", action="store_true")
    args = parser.parse_args()

    project_dir = Path("./examples/gentle")
    toc = TableOfContents.parse((project_dir / "toc.txt").read_text(encoding="utf-8"))
    base = BuildConfig(bib_files=["extra.bib"], emit_minimal_bib=True)

    for config in (
        base.with_overrides(
            {"output_format": OutputFormat.Html, "split_chapters": args.split}
        ),
        # The minimal bib only needs writing once
        base.with_overrides(
            {"output_format": OutputFormat.Plain, "emit_minimal_bib": False}
        ),
    ):
        real_build_sys = SimpleBuildSystem(
            project_dir=project_dir, output_dir=Path(args.output_dir)
        )
        try:
            result = build(real_build_sys, toc, config)
        except BuildFailed as e:
            print(e)
            raise SystemExit(1)
        for w in result.warnings:
            print(w.diagnostic())
        for path in result.outputs:
            print(f"Wrote {Path(args.output_dir) / path}")
