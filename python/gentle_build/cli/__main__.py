import argparse
import pathlib
import sys
from typing import Any, List

from gentle_build.cli import (
    InputParams,
    autodetect_input,
    describe_toc,
    render_all,
    report_errors,
)
from gentle_build.config import (
    BibliographyStyle,
    BuildConfig,
    OutputFormat,
    parse_setting_args,
)
from gentle_build.errors import BuildError


def config_from_args(args: Any) -> BuildConfig:
    """The command line settings. `--setting key:value` arguments override the specific flags."""
    config = BuildConfig(
        strict_macros=not args.no_strict_macros,
        bibliography_style=BibliographyStyle(args.bib_style),
        split_chapters=args.split,
        parallel_workers=args.jobs,
        bib_files=list(args.bib or []),
        emit_minimal_bib=args.minimal_bib,
    )
    return config.with_overrides(parse_setting_args(args.setting))


def get_input(args: Any) -> InputParams:
    return autodetect_input(
        getattr(args, "chapters", []), args.toc, args.project_dir
    )


def wrap_render(args: Any) -> int:
    try:
        input_params = get_input(args)
        config = config_from_args(args)
    except BuildError as e:
        report_errors([e])
        return 1
    formats = [OutputFormat(f) for f in args.formats]
    return render_all(input_params, pathlib.Path(args.output_dir), config, formats)


def wrap_show_toc(args: Any) -> int:
    try:
        input_params = get_input(args)
        settings = describe_toc(input_params, BuildConfig())
    except BuildError as e:
        report_errors([e])
        return 1

    print(f"Project directory: {input_params.project_dir}")
    print(f"{len(input_params.toc.entries)} chapter(s):")
    for i, entry in enumerate(input_params.toc.entries, start=1):
        print(f"\t{i}. {entry.chapter_id}\t{entry.path}")
    print("Settings:")
    for key, value in settings.items():
        print(f"\t{key}:\t{value}")
    return 0


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser("gentle_build.cli")

    subparsers = parser.add_subparsers(required=True)

    render_subcommand = subparsers.add_parser(
        "render", help="Render a set of chapters out into document files."
    )
    render_subcommand.add_argument(
        "chapters",
        type=str,
        nargs="*",
        help="The chapter source files, in order. Chapter ids are taken from the file names. Pass --toc instead to use a table of contents.",
    )
    render_subcommand.add_argument(
        "--toc",
        type=str,
        default=None,
        help="A table of contents file listing the chapters in order. If `--project-dir` is not set, the TOC's directory is the project directory.",
    )
    render_subcommand.add_argument(
        "-o",
        "--output-dir",
        type=str,
        required=True,
        help="The folder to write the output files into. Created if it doesn't exist, but only once the build has succeeded.",
    )
    render_subcommand.add_argument(
        "--project-dir",
        type=str,
        default=None,
        help="The 'project' directory, where all accessible input files are stored.",
    )
    render_subcommand.add_argument(
        "--formats",
        type=str,
        nargs="+",
        default=[OutputFormat.Html.value],
        choices=[f.value for f in OutputFormat],
        help="The format(s) to render to.",
    )
    render_subcommand.add_argument(
        "--no-strict-macros",
        action="store_true",
        help="Pass unknown macros and environments through verbatim with a warning, instead of failing the build.",
    )
    render_subcommand.add_argument(
        "--bib-style",
        type=str,
        default=BibliographyStyle.Declaration.value,
        choices=[s.value for s in BibliographyStyle],
        help="How bibliography entries are numbered: in declaration order, or in order of first citation.",
    )
    render_subcommand.add_argument(
        "--bib",
        type=str,
        nargs="*",
        help="BibTeX databases (relative to the project directory) which chapters may \\cite in addition to their thebibliography entries.",
    )
    render_subcommand.add_argument(
        "--minimal-bib",
        action="store_true",
        help="Also write the cited subset of the --bib databases to references.bib.",
    )
    render_subcommand.add_argument(
        "--split",
        action="store_true",
        help="HTML only: write one file per chapter, plus an index.html table of contents.",
    )
    render_subcommand.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=1,
        help="The number of chapters to macro-expand in parallel.",
    )
    render_subcommand.add_argument(
        "--setting",
        nargs="*",
        type=str,
        help="Colon-separated settings, e.g. 'reference_prefix:tut-'. Use 'gentle_build.cli show-toc' to see the settings a build uses.",
    )
    # If the render subcommand is selected, set `args.func = wrap_render`
    render_subcommand.set_defaults(func=wrap_render)

    show_toc_subcommand = subparsers.add_parser(
        "show-toc",
        help="Describe the chapters and settings a table of contents would build with.",
    )
    show_toc_subcommand.add_argument(
        "--toc",
        type=str,
        required=True,
        help="The table of contents file.",
    )
    show_toc_subcommand.add_argument(
        "--project-dir",
        type=str,
        default=None,
        help="The 'project' directory, where all accessible input files are stored.",
    )
    show_toc_subcommand.set_defaults(func=wrap_show_toc)

    return parser


def main(argv: List[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    try:
        return args.func(args)
    except ValueError as e:
        print(f"Error: {e}")
        return 1


def run_cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run_cli()
