from contextlib import contextmanager
from enum import Enum
from typing import Callable, Iterator, List, Optional, Sequence

from gentle_build import (
    Block,
    BlockScope,
    Inline,
    InlineScope,
    Location,
    Paragraph,
    Passthrough,
    SourceText,
    Text,
)
from gentle_build.doc.anchors import Anchor, AnchorAllocator
from gentle_build.doc.nodes import (
    CodeBlock,
    Formatted,
    InlineCode,
    InlineMath,
    LabelDeclaration,
)
from gentle_build.errors import BuildWarning, MalformedMarkupError, UnknownMacroError
from gentle_build.expand.lexer import Token, TokenKind
from gentle_build.expand.macros import (
    BlockResult,
    MacroKind,
    MacroTable,
    directive,
    display_math,
)


class InlineEnd(Enum):
    Paragraph = 0
    """Ends at a paragraph break, a block-level token, or an \\end{}. The terminator is left in place."""
    Group = 1
    """Ends at the '}' closing the current group."""
    Bracket = 2
    """Ends at the ']' closing an optional argument."""
    Custom = 3
    """Ends where a caller-supplied predicate says so."""


class ChapterParser:
    """Turns the tokens of a single chapter into blocks.

    Holds all the per-chapter state the macro handlers need:
    the anchor allocator, the anchor that a \\label{} would currently refer to,
    the open figures waiting for a \\caption{}, and the chapter title."""

    src: SourceText
    tokens: List[Token]
    table: MacroTable
    strict_macros: bool
    reference_prefix: str

    anchors: AnchorAllocator
    current_target: Anchor
    open_figures: List[Optional[InlineScope]]
    title: Optional[str]
    warnings: List[BuildWarning]

    _pos: int
    _custom_end: Optional[Callable[[Token], bool]]

    def __init__(
        self,
        src: SourceText,
        tokens: List[Token],
        table: MacroTable,
        strict_macros: bool = True,
        reference_prefix: str = "",
    ) -> None:
        self.src = src
        self.tokens = tokens
        self.table = table
        self.strict_macros = strict_macros
        self.reference_prefix = reference_prefix

        self.anchors = AnchorAllocator(src.chapter)
        self.current_target = self.anchors.chapter_anchor()
        self.open_figures = []
        self.title = None
        self.warnings = []

        self._pos = 0
        self._custom_end = None

    # Token access

    def peek(self) -> Optional[Token]:
        if self._pos < len(self.tokens):
            return self.tokens[self._pos]
        return None

    def advance(self) -> Token:
        tok = self.tokens[self._pos]
        self._pos += 1
        return tok

    def skip_blank(self) -> None:
        """Skip paragraph breaks and whitespace-only text."""
        while True:
            tok = self.peek()
            if tok is None:
                return
            if tok.kind == TokenKind.ParBreak or (
                tok.kind == TokenKind.Text and not tok.value.strip()
            ):
                self._pos += 1
            else:
                return

    def location(self, tok: Token) -> Location:
        return self.src.location(tok.offset)

    def error(self, msg: str, tok: Token) -> MalformedMarkupError:
        return MalformedMarkupError(msg, self.location(tok))

    def warn(self, msg: str, tok: Token) -> None:
        self.warnings.append(BuildWarning(msg, self.location(tok)))

    @contextmanager
    def label_target(self, anchor: Anchor) -> Iterator[None]:
        """Within this context, \\label{} refers to `anchor`."""
        prev = self.current_target
        self.current_target = anchor
        try:
            yield
        finally:
            self.current_target = prev

    # Arguments

    def _skip_space_before_arg(self) -> None:
        tok = self.peek()
        if tok is not None and tok.kind == TokenKind.Text and not tok.value.strip():
            self._pos += 1

    def _expect_open_brace(self, macro: Token) -> Token:
        self._skip_space_before_arg()
        tok = self.peek()
        if tok is None or tok.kind != TokenKind.OpenBrace:
            raise self.error(f"{_describe(macro)} is missing a {{}} argument", macro)
        return self.advance()

    def required_inlines(self, macro: Token) -> InlineScope:
        opener = self._expect_open_brace(macro)
        return self.parse_group(opener)

    def required_raw(self, macro: Token) -> str:
        """The source text of the next {} argument, with no expansion."""
        opener = self._expect_open_brace(macro)
        depth = 1
        while True:
            tok = self.peek()
            if tok is None:
                raise self.error("Unbalanced '{'", opener)
            self._pos += 1
            if tok.kind == TokenKind.OpenBrace:
                depth += 1
            elif tok.kind == TokenKind.CloseBrace:
                depth -= 1
                if depth == 0:
                    return self.src.text[opener.end : tok.offset]

    def _at_open_bracket(self) -> bool:
        tok = self.peek()
        return tok is not None and tok.kind == TokenKind.Text and tok.value == "["

    def optional_inlines(self) -> Optional[InlineScope]:
        if not self._at_open_bracket():
            return None
        opener = self.advance()
        inls = self._parse_inline_run(InlineEnd.Bracket, opener)
        self.advance()
        return InlineScope(tuple(inls))

    def optional_raw(self) -> Optional[str]:
        if not self._at_open_bracket():
            return None
        opener = self.advance()
        depth = 0
        while True:
            tok = self.peek()
            if tok is None:
                raise self.error("Unterminated optional argument, expected ']'", opener)
            self._pos += 1
            if tok.kind == TokenKind.OpenBrace:
                depth += 1
            elif tok.kind == TokenKind.CloseBrace:
                depth -= 1
            elif depth == 0 and tok.kind == TokenKind.Text and tok.value == "]":
                return self.src.text[opener.end : tok.offset]

    # Blocks

    def parse_chapter(self) -> BlockScope:
        contents = self.parse_blocks(stop=lambda t: False, opener=None, what="chapter")
        return contents

    def parse_environment_body(self, begin: Token) -> BlockScope:
        """Parse blocks up to the \\end{} matching `begin`, and consume it."""
        contents = self.parse_blocks(
            stop=lambda t: t.kind == TokenKind.EndEnv and t.value == begin.value,
            opener=begin,
            what=f"{begin.value} environment",
        )
        self.advance()
        return contents

    def parse_blocks(
        self, stop: Callable[[Token], bool], opener: Optional[Token], what: str
    ) -> BlockScope:
        """Parse blocks until `stop` matches a token, which is left in place.

        If `opener` is given, running out of tokens is an error."""
        blocks: List[Block] = []
        while True:
            tok = self.peek()
            if tok is None:
                if opener is not None:
                    raise self.error(f"Unterminated {what}", opener)
                break
            if stop(tok):
                break
            if tok.kind == TokenKind.ParBreak or (
                tok.kind == TokenKind.Text and not tok.value.strip()
            ):
                self._pos += 1
            elif tok.kind == TokenKind.EndEnv:
                raise self.error(
                    f"\\end{{{tok.value}}} doesn't match any \\begin{{{tok.value}}}", tok
                )
            elif tok.kind == TokenKind.CloseBrace:
                raise self.error("Unbalanced '}'", tok)
            elif self._is_block_token(tok):
                self._pos += 1
                _extend(blocks, self._dispatch_block(tok))
            else:
                inls = self._parse_inline_run(InlineEnd.Paragraph, tok)
                blocks.extend(_paragraph_or_labels(inls))
        return BlockScope(tuple(blocks))

    def _is_block_token(self, tok: Token) -> bool:
        if tok.kind in (
            TokenKind.CodeBlock,
            TokenKind.MathDisplay,
            TokenKind.BeginEnv,
            TokenKind.Directive,
        ):
            return True
        return (
            tok.kind == TokenKind.Command
            and self.table.macro_kind(tok.value) == MacroKind.Block
        )

    def _dispatch_block(self, tok: Token) -> BlockResult:
        if tok.kind == TokenKind.CodeBlock:
            return CodeBlock(code=tok.value, location=self.location(tok))
        elif tok.kind == TokenKind.MathDisplay:
            return display_math(self, tok)
        elif tok.kind == TokenKind.Directive:
            return directive(self, tok)
        elif tok.kind == TokenKind.BeginEnv:
            env_handler = self.table.get_environment(tok.value)
            if env_handler is None:
                return self._unknown_environment(tok)
            return env_handler(self, tok)
        else:
            block_handler = self.table.get_block(tok.value)
            assert block_handler is not None
            return block_handler(self, tok)

    def _unknown_environment(self, tok: Token) -> BlockResult:
        name = f"\\begin{{{tok.value}}}"
        if self.strict_macros:
            raise UnknownMacroError(name, self.location(tok))
        self.warn(f"Unknown environment '{tok.value}', passing it through", tok)
        begin = Paragraph(InlineScope((Passthrough(name),)))
        contents = self.parse_environment_body(tok)
        end = Paragraph(InlineScope((Passthrough(f"\\end{{{tok.value}}}"),)))
        return [begin, contents, end]

    # Inlines

    def parse_group(self, opener: Token) -> InlineScope:
        """Parse the inlines of a {} group whose opening brace has been consumed, and consume the closing brace."""
        inls = self._parse_inline_run(InlineEnd.Group, opener)
        self.advance()
        return InlineScope(tuple(_merge_text(inls)))

    def parse_inline_run_until(
        self, end: Callable[[Token], bool], opener: Token, what: str
    ) -> InlineScope:
        """Parse inlines, ignoring paragraph breaks, until `end` matches a token. The token is left in place."""
        prev_end = self._custom_end
        self._custom_end = end
        try:
            inls = self._parse_inline_run(InlineEnd.Custom, opener, what)
        finally:
            self._custom_end = prev_end
        return InlineScope(tuple(_trim(_merge_text(inls))))

    def _at_inline_end(self, tok: Token, end: InlineEnd) -> bool:
        if end == InlineEnd.Group:
            return tok.kind == TokenKind.CloseBrace
        elif end == InlineEnd.Bracket:
            return tok.kind == TokenKind.Text and tok.value == "]"
        elif end == InlineEnd.Custom:
            assert self._custom_end is not None
            return self._custom_end(tok)
        else:
            return (
                tok.kind in (TokenKind.ParBreak, TokenKind.EndEnv, TokenKind.CloseBrace)
                or self._is_block_token(tok)
            )

    def _parse_inline_run(
        self, end: InlineEnd, opener: Token, what: Optional[str] = None
    ) -> List[Inline]:
        """Collect inlines until the terminator for `end`, which is not consumed."""
        inls: List[Inline] = []
        while True:
            tok = self.peek()
            if tok is None:
                if end == InlineEnd.Paragraph:
                    break
                if end == InlineEnd.Group:
                    raise self.error("Unbalanced '{'", opener)
                if end == InlineEnd.Bracket:
                    raise self.error("Unterminated optional argument, expected ']'", opener)
                raise self.error(f"Unterminated {what}", opener)
            if self._at_inline_end(tok, end):
                break
            if tok.kind == TokenKind.ParBreak:
                self._pos += 1
                inls.append(Text(" "))
                continue
            if (
                tok.kind in (TokenKind.EndEnv, TokenKind.CloseBrace)
                or self._is_block_token(tok)
            ):
                if tok.kind == TokenKind.CloseBrace:
                    raise self.error("Unbalanced '}'", tok)
                raise self.error(
                    f"{_describe(tok)} can't be used inside inline content", tok
                )
            self._pos += 1

            if tok.kind == TokenKind.Command:
                format_type = self.table.get_declaration(tok.value)
                if format_type is not None:
                    # A declaration formats everything up to the end of the enclosing run
                    rest = self._parse_inline_run(end, opener, what)
                    inls.append(
                        Formatted(format_type, InlineScope(tuple(_merge_text(rest))))
                    )
                    continue

            inl = self._dispatch_inline(tok)
            if inl is not None:
                inls.append(inl)
        return inls

    def _dispatch_inline(self, tok: Token) -> Optional[Inline]:
        if tok.kind == TokenKind.Text:
            return Text(tok.value)
        elif tok.kind == TokenKind.OpenBrace:
            return self.parse_group(tok)
        elif tok.kind == TokenKind.CodeInline:
            return InlineCode(tok.value)
        elif tok.kind == TokenKind.MathInline:
            return InlineMath(tok.value)
        elif tok.kind == TokenKind.Command:
            handler = self.table.get_inline(tok.value)
            if handler is None:
                return self._unknown_macro(tok)
            return handler(self, tok)
        raise self.error(f"Unexpected {_describe(tok)}", tok)

    def _unknown_macro(self, tok: Token) -> Inline:
        if self.strict_macros:
            raise UnknownMacroError(f"\\{tok.value}", self.location(tok))
        # Pass the macro through with any arguments that immediately follow it
        end = tok.end
        while True:
            if self._at_open_bracket():
                self.optional_raw()
            else:
                nxt = self.peek()
                if nxt is None or nxt.kind != TokenKind.OpenBrace:
                    break
                self.required_raw(tok)
            end = self.tokens[self._pos - 1].end
        self.warn(f"Unknown macro '\\{tok.value}', passing it through", tok)
        return Passthrough(self.src.text[tok.offset : end])


def _describe(tok: Token) -> str:
    if tok.kind == TokenKind.Command:
        return f"\\{tok.value}"
    if tok.kind == TokenKind.BeginEnv:
        return f"\\begin{{{tok.value}}}"
    if tok.kind == TokenKind.EndEnv:
        return f"\\end{{{tok.value}}}"
    if tok.kind == TokenKind.CodeBlock:
        return "a code block"
    if tok.kind == TokenKind.MathDisplay:
        return "display math"
    if tok.kind == TokenKind.Directive:
        return f"the directive '%**{tok.value}'"
    return repr(tok.value)


def _extend(blocks: List[Block], result: BlockResult) -> None:
    if result is None:
        return
    if isinstance(result, Block):
        blocks.append(result)
    else:
        blocks.extend(result)


def _merge_text(inls: Sequence[Inline]) -> List[Inline]:
    """Merge adjacent Text items, collapsing the runs of spaces this creates."""
    merged: List[Inline] = []
    for i in inls:
        if isinstance(i, Text) and merged and isinstance(merged[-1], Text):
            prev = merged[-1].text
            text = i.text
            if prev.endswith(" ") and text.startswith(" "):
                text = text.lstrip(" ")
            merged[-1] = Text(prev + text)
        else:
            merged.append(i)
    return merged


def _trim(inls: List[Inline]) -> List[Inline]:
    """Strip leading and trailing whitespace from a run of inlines."""
    inls = list(inls)
    if inls and isinstance(inls[0], Text):
        inls[0] = Text(inls[0].text.lstrip())
        if not inls[0].text:
            inls.pop(0)
    if inls and isinstance(inls[-1], Text):
        inls[-1] = Text(inls[-1].text.rstrip())
        if not inls[-1].text:
            inls.pop()
    return inls


def _paragraph_or_labels(inls: List[Inline]) -> List[Block]:
    """Wrap a run of inlines in a Paragraph.

    \\label{}s at the start of the run (e.g. on the line after a \\section{}) become label blocks
    of their own, and an empty run produces nothing."""
    rest = _merge_text(inls)
    blocks: List[Block] = []
    while rest and (
        isinstance(rest[0], LabelDeclaration)
        or (isinstance(rest[0], Text) and not rest[0].text.strip())
    ):
        first = rest.pop(0)
        if isinstance(first, LabelDeclaration):
            blocks.append(first)
    rest = _trim(rest)
    if rest:
        blocks.append(Paragraph(InlineScope(tuple(rest))))
    return blocks
