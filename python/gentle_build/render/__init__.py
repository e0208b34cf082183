import abc
from contextlib import contextmanager
from typing import (
    Callable,
    Generic,
    Iterable,
    Iterator,
    List,
    Optional,
    Protocol,
    Set,
    Type,
    TypeVar,
    Union,
)

from gentle_build import (
    Block,
    BlockScope,
    Inline,
    InlineScope,
    LineBreak,
    Paragraph,
    Passthrough,
    Text,
)
from gentle_build.build_system import BuildSystem
from gentle_build.doc import Chapter, Document
from gentle_build.doc.nodes import Footnote, LabelDeclaration
from gentle_build.render.dyn_dispatch import DynDispatch
from gentle_build.resolve import Resolution

T = TypeVar("T")
TBlockOrInline = TypeVar("TBlockOrInline", bound=Union[Block, Inline])
TRenderer = TypeVar("TRenderer", bound="Renderer")
TRenderer_contra = TypeVar("TRenderer_contra", bound="Renderer", contravariant=True)


class EmitterDispatch(Generic[TRenderer_contra]):
    """Performs DynDispatch for block and inline emitters"""

    block_inline_emitters: DynDispatch[[TRenderer_contra], None]

    def __init__(self) -> None:
        super().__init__()
        self.block_inline_emitters = DynDispatch()

    def register_block_or_inline(
        self,
        type: Type[TBlockOrInline],
        renderer: Callable[[TBlockOrInline, TRenderer_contra], None],
    ) -> None:
        self.block_inline_emitters.register_handler(type, renderer)

    def emit_block_or_inline(
        self,
        n: Block | Inline,
        renderer: TRenderer_contra,
    ) -> None:
        f = self.block_inline_emitters.get_handler(n)
        if f is None:
            raise NotImplementedError(f"Didn't have renderer for {n}")
        f(n, renderer)

    def renderer_keys(self) -> Set[Type[Block | Inline]]:
        return set(self.block_inline_emitters.keys())


class Writable(Protocol):
    def write(self, s: str, /) -> int: ...


class Renderer(abc.ABC):
    """Walks a resolved document and writes it out.

    Nothing here validates anything: by the time a Renderer exists every reference and citation has resolved."""

    document: Document
    resolution: Resolution
    handlers: EmitterDispatch  # type: ignore[type-arg]
    write_to: Writable

    current_chapter: Optional[Chapter]
    pending_footnotes: List[Footnote]
    """Footnotes of the current chapter which haven't had their contents emitted yet."""

    _indent: str = ""
    # After emitting a newline with emit_newline, this is set.
    # The next call to emit_raw will emit _indent.
    # This means changing the indent after a newline still applies to the next line.
    _need_indent: bool = False

    def __init__(
        self: TRenderer,
        document: Document,
        resolution: Resolution,
        handlers: EmitterDispatch[TRenderer],
        write_to: Writable,
    ) -> None:
        self.document = document
        self.resolution = resolution
        self.handlers = handlers
        self.write_to = write_to
        self.current_chapter = None
        self.pending_footnotes = []

    @classmethod
    def default_emitter_dispatch(
        cls: Type[TRenderer],
    ) -> EmitterDispatch[TRenderer]:
        """The most basic EmitterDispatch for a renderer. Renderers extend it with emitters for their node types."""
        handlers: EmitterDispatch[TRenderer] = EmitterDispatch()
        handlers.register_block_or_inline(BlockScope, lambda bs, r: r.emit_blockscope(bs))
        handlers.register_block_or_inline(Paragraph, lambda p, r: r.emit_paragraph(p))
        handlers.register_block_or_inline(
            InlineScope, lambda inls, r: r.emit_inlinescope(inls)
        )
        handlers.register_block_or_inline(Text, lambda t, r: r.emit_text(t))
        handlers.register_block_or_inline(
            Passthrough, lambda p, r: r.emit_text(Text(p.source))
        )
        handlers.register_block_or_inline(LineBreak, lambda lb, r: r.emit_line_break())
        # A label has already done its job by resolution time
        handlers.register_block_or_inline(LabelDeclaration, lambda label, r: None)
        handlers.register_block_or_inline(
            Footnote, lambda fn, r: r.emit_footnote_mark(fn)
        )
        return handlers

    def emit_raw(self, x: str) -> None:
        """
        The function on which all emitters are based.
        """
        if self._need_indent:
            self.write_to.write(self._indent)
            self._need_indent = False
        self.write_to.write(x)

    def emit_newline(self) -> None:
        self.write_to.write("\n")
        self._need_indent = True

    def emit_join(
        self,
        emit_t: Callable[[T], None],
        ts: Iterable[T],
        emit_join: Callable[[], None],
    ) -> None:
        first = True
        for t in ts:
            if not first:
                emit_join()
            first = False
            emit_t(t)

    def emit_break_paragraph(self) -> None:
        self.emit_newline()
        self.emit_newline()

    @abc.abstractmethod
    def emit_text(self, t: Text) -> None:
        """
        Given some text, emit a string that will look like that text exactly in the given backend.
        """
        raise NotImplementedError("Need to implement emit_text")

    @abc.abstractmethod
    def emit_line_break(self) -> None: ...

    @abc.abstractmethod
    def emit_footnote_mark(self, fn: Footnote) -> None:
        """Emit the mark for a footnote at its origin point. Implementations should call queue_footnote()."""
        ...

    @abc.abstractmethod
    def emit_footnote_contents(self, fn: Footnote) -> None:
        """Emit the text of a footnote at the end of its chapter, with a link back to its origin point."""
        ...

    def emit(
        self,
        *args: Union[Inline, Block],
        joiner: Optional[Callable[[], None]] = None,
    ) -> None:
        first = True
        for a in args:
            if joiner and not first:
                joiner()
            first = False
            if isinstance(a, Inline):
                self.emit_inline(a)
            elif isinstance(a, Block):
                self.emit_block(a)
            else:
                raise ValueError(f"Don't know how to automatically render {a}")

    def emit_inline(self, i: Inline) -> None:
        self.handlers.emit_block_or_inline(i, self)

    def emit_block(self, b: Block) -> None:
        self.handlers.emit_block_or_inline(b, self)

    def is_silent(self, b: Block) -> bool:
        """Blocks which produce no output, and so shouldn't be separated from their neighbours."""
        return isinstance(b, LabelDeclaration)

    # This can be overridden by renderers to add stuff at the top level
    def emit_document(self, doc: Document) -> None:
        self.emit_join(self.emit_chapter, doc, self.emit_break_paragraph)

    def emit_chapter(self, chapter: Chapter) -> None:
        self.current_chapter = chapter
        self.pending_footnotes = []
        self.emit_blockscope(chapter.contents)
        self.emit_footnotes()

    def queue_footnote(self, fn: Footnote) -> None:
        self.pending_footnotes.append(fn)

    def emit_footnotes(self) -> None:
        # Footnote contents can contain footnote marks of their own, which queue more footnotes
        while self.pending_footnotes:
            footnotes = self.pending_footnotes
            self.pending_footnotes = []
            self.emit_break_paragraph()
            self.emit_join(self.emit_footnote_contents, footnotes, self.emit_newline)

    def emit_blockscope(self, bs: BlockScope) -> None:
        # If you get nested blockscopes, this will still be fine - you won't get double separators
        self.emit_join(
            self.emit_block,
            [b for b in bs if not self.is_silent(b)],
            self.emit_break_paragraph,
        )

    def emit_paragraph(self, p: Paragraph) -> None:
        self.emit_inlinescope(p.contents)

    def emit_inlinescope(self, inls: InlineScope) -> None:
        # Default: join internal inline elements directly
        for i in inls:
            self.emit_inline(i)

    def footnote_number(self, fn: Footnote) -> str:
        return self.resolution.anchors.number(fn.anchor)

    def push_indent(self, n: int) -> None:
        self._indent += " " * n

    def pop_indent(self, n: int) -> None:
        if len(self._indent) < n:
            raise ValueError()
        self._indent = self._indent[:-n]

    @contextmanager
    def indent(self, n: int) -> Iterator[None]:
        self.push_indent(n)
        try:
            yield
        finally:
            self.pop_indent(n)


class RenderSetup(abc.ABC, Generic[TRenderer]):
    """Knows how to turn a resolved document into one or more output files for a single format."""

    emitter: EmitterDispatch[TRenderer]

    @property
    @abc.abstractmethod
    def default_output_file_name(self) -> str: ...

    @abc.abstractmethod
    def register_file_generator_jobs(
        self,
        document: Document,
        resolution: Resolution,
        build_sys: BuildSystem,
        output_file_name: Optional[str],
    ) -> None: ...

    def known_node_types(self) -> Iterable[Type[Union[Block, Inline]]]:
        return self.emitter.renderer_keys()
