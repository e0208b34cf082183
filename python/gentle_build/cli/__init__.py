import pathlib
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from gentle_build.build_system import SimpleBuildSystem
from gentle_build.config import BuildConfig, OutputFormat
from gentle_build.doc.loader import TableOfContents
from gentle_build.errors import BuildError, BuildFailed, LoadError
from gentle_build.system import BuildResult, build


@dataclass
class InputParams:
    project_dir: pathlib.Path
    toc: TableOfContents


def autodetect_input(
    chapter_args: Sequence[str], toc_arg: Optional[str], project_dir_arg: Optional[str]
) -> InputParams:
    """
    Given either the chapter arguments or the [--toc] argument, and the optional [--project-dir] argument,
    determine the project directory and the table of contents.

    If [--project-dir] is supplied, the TOC file and chapters are taken relative to it
    (a TOC path that exists as given is made relative to it instead).

    If [--project-dir] is not supplied:
    - With [--toc], the directory containing the TOC file is the project directory
        - e.g. ./examples/gentle/toc.txt will infer (./examples/gentle/) (toc.txt), and the TOC lists chapters relative to that
    - With chapter arguments, the current directory '.' is the project directory
    """
    if toc_arg and chapter_args:
        raise ValueError("Pass either chapter files or --toc, not both")
    if not toc_arg and not chapter_args:
        raise ValueError("Pass at least one chapter file, or --toc")

    if toc_arg:
        toc_path = pathlib.Path(toc_arg)
        if project_dir_arg:
            project_dir = pathlib.Path(project_dir_arg)
            if toc_path.is_file():
                toc_path = toc_path.resolve().relative_to(project_dir.resolve())
        else:
            if not toc_path.is_file():
                raise ValueError(f"Supplied table of contents '{toc_arg}' isn't a file")
            project_dir = toc_path.parent
            toc_path = pathlib.Path(toc_path.name)
            print(f"Taking project directory as the TOC's directory: '{project_dir}'")
        toc_file = project_dir / toc_path
        if not toc_file.is_file():
            raise LoadError(str(toc_path), f"doesn't exist in {project_dir}")
        with open(toc_file, "r", encoding="utf-8") as f:
            toc = TableOfContents.parse(f.read())
        return InputParams(project_dir, toc)

    project_dir = pathlib.Path(project_dir_arg or ".")
    return InputParams(project_dir, TableOfContents.from_paths(list(chapter_args)))


def config_for_format(base: BuildConfig, format: OutputFormat) -> BuildConfig:
    # Splitting only applies to HTML, so a multi-format render doesn't trip over it
    return base.with_overrides(
        {
            "output_format": format,
            "split_chapters": base.split_chapters and format == OutputFormat.Html,
        }
    )


def render(
    input: InputParams, output_dir: pathlib.Path, config: BuildConfig
) -> BuildResult:
    build_sys = SimpleBuildSystem(input.project_dir, output_dir)
    return build(build_sys, input.toc, config)


def report_warnings(result: BuildResult) -> None:
    for w in result.warnings:
        print(w.diagnostic())


def report_errors(errors: List[BuildError]) -> None:
    print(f"Build failed with {len(errors)} error(s):")
    for e in errors:
        print(e.diagnostic())


def render_all(
    input: InputParams,
    output_dir: pathlib.Path,
    base: BuildConfig,
    formats: Sequence[OutputFormat],
) -> int:
    """Render every format, printing warnings and diagnostics. Returns the process exit code."""
    for format in formats:
        try:
            config = config_for_format(base, format)
            result = render(input, output_dir, config)
        except BuildFailed as e:
            report_errors(e.errors)
            return 1
        except BuildError as e:
            report_errors([e])
            return 1
        report_warnings(result)
        for path in result.outputs:
            print(f"Wrote {output_dir / path}")
    return 0


def describe_toc(input: InputParams, config: BuildConfig) -> Dict[str, str]:
    """The settings a build of this TOC would use, after the TOC's own overrides."""
    if input.toc.settings:
        config = config.with_overrides(input.toc.settings)
    return {
        "output_format": config.output_format.value,
        "strict_macros": str(config.strict_macros).lower(),
        "bibliography_style": config.bibliography_style.value,
        "reference_prefix": config.reference_prefix,
        "split_chapters": str(config.split_chapters).lower(),
        "parallel_workers": str(config.parallel_workers),
        "bib_files": ", ".join(config.bib_files),
        "encoding": config.encoding,
    }
