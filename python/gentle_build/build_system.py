"""Building a document requires reading the chapter sources (and maybe bibliography databases) and writing out the rendered document files.

The BuildSystem abstracts over where those files live.
Input files are identified by project-relative paths, output files by output-relative paths.
In the simple case these are relative to a single project folder and output folder respectively.

Rendering is registered as "file jobs", which only run when `run_jobs()` is called.
The pipeline only registers jobs once the whole document has resolved cleanly,
so a failed build never creates any output file.

Each job is handed a JobOutputFile, which opens a text handle to the file regardless of where it lives.
This allows unit tests to use in-memory filesystems without changing job code.
"""

import abc
import io
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, ContextManager, Dict, Generator, TypeAlias

from gentle_build.errors import LoadError

ProjectRelativePath = str
OutputRelativePath = str

TextWriter: TypeAlias = io.TextIOBase


class JobOutputFile(abc.ABC):
    @property
    @abc.abstractmethod
    def path(self) -> OutputRelativePath:
        """The internal path of this file, not usable with filesystem functions."""
        ...

    @abc.abstractmethod
    def open_write_text(
        self, encoding: str = "utf-8"
    ) -> ContextManager[TextWriter]: ...


# A FileJob is a function the BuildSystem eventually calls with the resolved output file.
FileJob = Callable[[JobOutputFile], None]


class BuildSystem(abc.ABC):
    """A BuildSystem reads the project's input files and runs Jobs which each produce one output file.
    It is also an abstraction over a potentially-virtual file system."""

    file_jobs: Dict[OutputRelativePath, FileJob]

    def __init__(self) -> None:
        super().__init__()
        self.file_jobs = {}

    @abc.abstractmethod
    def _read_bytes(self, project_relative_path: ProjectRelativePath) -> bytes:
        """Raise LoadError if the file doesn't exist."""
        ...

    @abc.abstractmethod
    def _resolve_output_file(
        self, output_relative_path: OutputRelativePath
    ) -> JobOutputFile: ...

    def read_text(
        self, project_relative_path: ProjectRelativePath, encoding: str = "utf-8"
    ) -> str:
        """Read a whole input file as text. Raises LoadError if it's missing, unreadable or can't be decoded."""
        try:
            data = self._read_bytes(project_relative_path)
        except OSError as e:
            raise LoadError(project_relative_path, str(e)) from e
        try:
            return data.decode(encoding)
        except UnicodeDecodeError as e:
            raise LoadError(
                project_relative_path, f"not valid {encoding}: {e.reason}"
            ) from e

    def register_file_generator(
        self, job: FileJob, output_relative_path: OutputRelativePath
    ) -> None:
        """Track a job and an output-relative path that will eventually be populated with data by the job"""

        if output_relative_path in self.file_jobs:
            raise ValueError(
                f"Two jobs tried to generate the same overall file {output_relative_path}"
            )

        self.file_jobs[output_relative_path] = job

    def run_jobs(self) -> None:
        for output_relative_path, job in self.file_jobs.items():
            job(self._resolve_output_file(output_relative_path))


class SimpleBuildSystem(BuildSystem):
    project_dir: Path
    output_dir: Path

    def __init__(
        self, project_dir: Path, output_dir: Path, make_output_dir: bool = True
    ) -> None:
        super().__init__()
        project_dir = project_dir.resolve()
        if not project_dir.is_dir():
            raise ValueError(
                f"Project dir '{project_dir}' either doesn't exist or isn't a directory"
            )
        output_dir = output_dir.resolve()
        if not output_dir.is_dir() and not make_output_dir:
            raise ValueError(
                f"Output dir '{output_dir}' either doesn't exist or isn't a directory"
            )
        self.project_dir = project_dir
        self.output_dir = output_dir
        self._make_output_dir = make_output_dir

    def _read_bytes(self, project_relative_path: ProjectRelativePath) -> bytes:
        p = (self.project_dir / Path(project_relative_path)).resolve()
        if not p.is_relative_to(self.project_dir):
            raise LoadError(
                project_relative_path, f"escapes the project dir {self.project_dir}"
            )
        if not p.is_file():
            raise LoadError(
                project_relative_path,
                f"doesn't exist in {self.project_dir} or is a directory",
            )
        return p.read_bytes()

    def _resolve_output_file(
        self, output_relative_path: OutputRelativePath
    ) -> JobOutputFile:
        # The output directory is only created once something is actually written,
        # so a failed build leaves no trace.
        if self._make_output_dir:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        p = (self.output_dir / Path(output_relative_path)).resolve()
        if not p.parent.exists():
            raise ValueError(
                f"Requested output '{output_relative_path}' doesn't have an existing parent directory '{p.parent}'."
            )
        return RealJobOutputFile(p, relpath=output_relative_path)


class RealJobOutputFile(JobOutputFile):
    """Implementation of JobOutputFile for "real" files that exist in an external filesystem"""

    _relpath: OutputRelativePath
    _path: Path

    def __init__(self, path: Path, relpath: OutputRelativePath) -> None:
        super().__init__()
        self._path = path
        self._relpath = relpath

    @property
    def path(self) -> OutputRelativePath:
        return self._relpath

    def open_write_text(self, encoding: str = "utf-8") -> ContextManager[TextWriter]:
        # newline="" so that output is byte-identical across platforms
        return open(self._path, "w", encoding=encoding, newline="")


class InMemoryBuildSystem(BuildSystem):
    """Implementation of BuildSystem that keeps every input and output file in memory."""

    input_files: Dict[str, bytes]
    output_files: Dict[str, "InMemoryOutputFile"]

    def __init__(self, input_files: Dict[str, bytes]) -> None:
        super().__init__()
        self.input_files = input_files
        self.output_files = {}

    @classmethod
    def from_text(
        cls, input_files: Dict[str, str], encoding: str = "utf-8"
    ) -> "InMemoryBuildSystem":
        return cls({k: v.encode(encoding) for k, v in input_files.items()})

    def _read_bytes(self, project_relative_path: ProjectRelativePath) -> bytes:
        data = self.input_files.get(project_relative_path)
        if data is None:
            raise LoadError(project_relative_path, "doesn't exist")
        return data

    def _resolve_output_file(self, output_relative_path: str) -> JobOutputFile:
        f = self.output_files.get(output_relative_path)
        if f is None:
            f = InMemoryOutputFile(output_relative_path)
            self.output_files[output_relative_path] = f
        return f

    def get_outputs(self) -> Dict[str, bytes]:
        return {k: v.data.getvalue() for k, v in self.output_files.items()}

    def get_text_outputs(self, encoding: str = "utf-8") -> Dict[str, str]:
        return {k: v.decode(encoding) for k, v in self.get_outputs().items()}


class InMemoryOutputFile(JobOutputFile):
    """Implementation of JobOutputFile for a file from an in-memory filesystem"""

    _relpath: OutputRelativePath
    data: io.BytesIO

    def __init__(self, relpath: OutputRelativePath) -> None:
        super().__init__()
        self._relpath = relpath
        self.data = io.BytesIO()

    @property
    def path(self) -> OutputRelativePath:
        return self._relpath

    @contextmanager
    def open_write_text(
        self, encoding: str = "utf-8"
    ) -> Generator[TextWriter, None, None]:
        wrapper = io.TextIOWrapper(self.data, encoding=encoding, newline="")
        try:
            yield wrapper
        finally:
            # Closing the wrapper would close the BytesIO too
            wrapper.flush()
            wrapper.detach()
