"""Tokenizer for the chapter markup dialect.

The dialect is LaTeX-like, plus the conventions of the Haskell tutorial sources:
- `@code@` is inline code, `@@` is a literal @
- `\\bprog ... \\eprog` is a display code block
- `%**<title>...</title>`, `%**~header`, `%**~footer` are directives for the HTML build

Anything whose contents must not be macro-expanded (code, verbatim environments, math)
is captured whole by the lexer, so the expander never sees the inside of it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List

from gentle_build import SourceText
from gentle_build.errors import MalformedMarkupError


class TokenKind(Enum):
    Text = "text"
    Command = "command"
    OpenBrace = "{"
    CloseBrace = "}"
    BeginEnv = "begin"
    EndEnv = "end"
    ParBreak = "par"
    CodeInline = "code-inline"
    CodeBlock = "code-block"
    MathInline = "math-inline"
    MathDisplay = "math-display"
    Directive = "directive"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: str
    offset: int
    """Start of the token in the source"""
    end: int
    """One past the end of the token in the source"""
    numbered: bool = False
    """For MathDisplay: whether it came from a numbered environment e.g. equation"""
    env: str = ""
    """For MathDisplay: the environment it came from, empty for $$ and \\[ \\]"""


VERBATIM_ENVS = {"verbatim", "verbatim*"}
NUMBERED_MATH_ENVS = {"equation", "align", "eqnarray", "gather", "multline"}
MATH_ENVS = (
    NUMBERED_MATH_ENVS
    | {f"{e}*" for e in NUMBERED_MATH_ENVS}
    | {"displaymath", "math"}
)

# Commands whose first argument is a URL, where @ and % are ordinary characters
RAW_ARG_COMMANDS = {"url", "href"}

# Characters which a backslash turns back into plain text
ESCAPABLE = "%$&#_{}@"
WHITESPACE = " \t\r\n"


class Lexer:
    src: SourceText
    text: str
    tokens: List[Token]

    _i: int
    _buf: List[str]
    _buf_start: int

    def __init__(self, src: SourceText) -> None:
        self.src = src
        self.text = src.text
        self.tokens = []
        self._i = 0
        self._buf = []
        self._buf_start = 0

    def _error(self, msg: str, offset: int) -> MalformedMarkupError:
        return MalformedMarkupError(msg, self.src.location(offset))

    def _push_text(self, s: str, offset: int) -> None:
        if not self._buf:
            self._buf_start = offset
        # Collapse runs of spaces, because the source's line structure shouldn't leak into the output
        if s == " " and self._buf and self._buf[-1].endswith(" "):
            return
        self._buf.append(s)

    def _flush_text(self, end: int) -> None:
        if self._buf:
            self.tokens.append(
                Token(TokenKind.Text, "".join(self._buf), self._buf_start, end)
            )
            self._buf = []

    def _emit(
        self, kind: TokenKind, value: str, start: int, end: int, numbered: bool = False, env: str = ""
    ) -> None:
        self._flush_text(start)
        self.tokens.append(Token(kind, value, start, end, numbered, env))

    def _read_until(self, terminator: str, start: int, what: str) -> int:
        """Return the index of the next `terminator` at or after self._i, or raise if there isn't one."""
        idx = self.text.find(terminator, self._i)
        if idx < 0:
            raise self._error(f"Unterminated {what}, expected '{terminator}'", start)
        return idx

    def tokenize(self) -> List[Token]:
        text = self.text
        n = len(text)
        while self._i < n:
            start = self._i
            c = text[start]
            if c == "%":
                self._lex_comment()
            elif c in WHITESPACE:
                self._lex_whitespace()
            elif c == "{":
                self._emit(TokenKind.OpenBrace, c, start, start + 1)
                self._i += 1
            elif c == "}":
                self._emit(TokenKind.CloseBrace, c, start, start + 1)
                self._i += 1
            elif c in "[]":
                # Kept as separate Text tokens so optional arguments can be picked out
                self._emit(TokenKind.Text, c, start, start + 1)
                self._i += 1
            elif c == "~":
                self._push_text(" ", start)
                self._i += 1
            elif c == "@":
                self._lex_inline_code()
            elif c == "$":
                self._lex_dollar_math()
            elif c == "\\":
                self._lex_backslash()
            else:
                self._push_text(c, start)
                self._i += 1
        self._flush_text(n)
        return self.tokens

    def _lex_comment(self) -> None:
        start = self._i
        line_end = self.text.find("\n", start)
        if line_end < 0:
            line_end = len(self.text)
        comment = self.text[start:line_end]
        if comment.startswith("%**"):
            self._emit(TokenKind.Directive, comment[3:].strip(), start, line_end)
        # A comment swallows its newline and the next line's indentation.
        # If the next line is empty, that's still a paragraph break.
        j = line_end + 1
        while j < len(self.text) and self.text[j] in " \t":
            j += 1
        self._i = j
        if j < len(self.text) and self.text[j] in "\r\n":
            self._lex_whitespace(already_seen_newlines=1)

    def _lex_whitespace(self, already_seen_newlines: int = 0) -> None:
        start = self._i
        j = start
        newlines = already_seen_newlines
        while j < len(self.text) and self.text[j] in WHITESPACE:
            if self.text[j] == "\n":
                newlines += 1
            j += 1
        self._i = j
        if newlines >= 2:
            self._emit(TokenKind.ParBreak, "", start, j)
        else:
            self._push_text(" ", start)

    def _lex_inline_code(self) -> None:
        start = self._i
        if self.text.startswith("@@", start):
            self._push_text("@", start)
            self._i += 2
            return
        # Read up to the next lone @, with @@ standing for a literal @ inside the code
        j = start + 1
        code: List[str] = []
        while True:
            if j >= len(self.text):
                raise self._error("Unterminated inline code, expected '@'", start)
            if self.text[j] == "@":
                if self.text.startswith("@@", j):
                    code.append("@")
                    j += 2
                    continue
                break
            code.append(self.text[j])
            j += 1
        self._emit(TokenKind.CodeInline, "".join(code), start, j + 1)
        self._i = j + 1

    def _lex_dollar_math(self) -> None:
        start = self._i
        if self.text.startswith("$$", start):
            self._i = start + 2
            end = self._read_until("$$", start, "display math")
            self._emit(TokenKind.MathDisplay, self.text[start + 2 : end].strip(), start, end + 2)
            self._i = end + 2
            return
        j = start + 1
        while True:
            if j >= len(self.text):
                raise self._error("Unterminated inline math, expected '$'", start)
            if self.text[j] == "\\":
                j += 2
                continue
            if self.text[j] == "$":
                break
            j += 1
        self._emit(TokenKind.MathInline, self.text[start + 1 : j], start, j + 1)
        self._i = j + 1

    def _read_env_name(self, command_start: int) -> str:
        j = self._i
        while j < len(self.text) and self.text[j] in " \t":
            j += 1
        if j >= len(self.text) or self.text[j] != "{":
            raise self._error("Expected '{environment name}'", command_start)
        close = self.text.find("}", j)
        if close < 0:
            raise self._error("Unterminated environment name", command_start)
        self._i = close + 1
        name = self.text[j + 1 : close].strip()
        if not name:
            raise self._error("Empty environment name", command_start)
        return name

    def _lex_backslash(self) -> None:
        start = self._i
        if start + 1 >= len(self.text):
            raise self._error("Backslash at end of file", start)
        nxt = self.text[start + 1]
        if nxt.isalpha():
            j = start + 1
            while j < len(self.text) and self.text[j].isalpha():
                j += 1
            if j < len(self.text) and self.text[j] == "*":
                j += 1
            name = self.text[start + 1 : j]
            self._i = j
            self._lex_named_command(name, start)
        elif nxt == "[":
            self._i = start + 2
            end = self._read_until("\\]", start, "display math")
            self._emit(TokenKind.MathDisplay, self.text[start + 2 : end].strip(), start, end + 2)
            self._i = end + 2
        elif nxt == "\\":
            self._emit(TokenKind.Command, "\\", start, start + 2)
            self._i = start + 2
        elif nxt in ESCAPABLE:
            self._push_text(nxt, start)
            self._i = start + 2
        elif nxt in " \t\n,;:!":
            # Control space and the spacing commands
            self._push_text(" ", start)
            self._i = start + 2
        elif nxt in "/-":
            # Italic correction and discretionary hyphen don't produce any text
            self._i = start + 2
        else:
            self._emit(TokenKind.Command, nxt, start, start + 2)
            self._i = start + 2

    def _lex_named_command(self, name: str, start: int) -> None:
        if name == "bprog":
            end = self._read_until("\\eprog", start, "\\bprog code block")
            self._emit(TokenKind.CodeBlock, _strip_blank_lines(self.text[self._i : end]), start, end + len("\\eprog"))
            self._i = end + len("\\eprog")
        elif name == "verb":
            if self._i >= len(self.text):
                raise self._error("\\verb without a delimiter", start)
            delim = self.text[self._i]
            self._i += 1
            end = self._read_until(delim, start, "\\verb")
            self._emit(TokenKind.CodeInline, self.text[self._i : end], start, end + 1)
            self._i = end + 1
        elif name == "begin":
            env = self._read_env_name(start)
            if env in VERBATIM_ENVS or env in MATH_ENVS:
                terminator = f"\\end{{{env}}}"
                end = self._read_until(terminator, start, f"{env} environment")
                body = self.text[self._i : end]
                if env in VERBATIM_ENVS:
                    self._emit(TokenKind.CodeBlock, _strip_blank_lines(body), start, end + len(terminator))
                else:
                    self._emit(
                        TokenKind.MathDisplay,
                        body.strip(),
                        start,
                        end + len(terminator),
                        numbered=env in NUMBERED_MATH_ENVS,
                        env=env,
                    )
                self._i = end + len(terminator)
            else:
                self._emit(TokenKind.BeginEnv, env, start, self._i)
        elif name == "end":
            env = self._read_env_name(start)
            self._emit(TokenKind.EndEnv, env, start, self._i)
        elif name in RAW_ARG_COMMANDS:
            self._emit(TokenKind.Command, name, start, self._i)
            self._lex_raw_argument(name, start)
        else:
            self._emit(TokenKind.Command, name, start, self._i)
            # Spaces after a command word only terminate it
            while self._i < len(self.text) and self.text[self._i] in " \t":
                self._i += 1

    def _lex_raw_argument(self, name: str, command_start: int) -> None:
        """Capture a brace-balanced argument as a single Text token without interpreting it."""
        j = self._i
        while j < len(self.text) and self.text[j] in WHITESPACE:
            j += 1
        if j >= len(self.text) or self.text[j] != "{":
            # Let the parser report the missing argument
            return
        self._i = j
        depth = 0
        while j < len(self.text):
            c = self.text[j]
            if c == "\\":
                j += 2
                continue
            if c == "{":
                depth += 1
            elif c == "}":
                depth -= 1
                if depth == 0:
                    break
            j += 1
        else:
            raise self._error(f"Unterminated \\{name} argument, expected '}}'", command_start)
        self._emit(TokenKind.OpenBrace, "{", self._i, self._i + 1)
        if j > self._i + 1:
            self._emit(TokenKind.Text, self.text[self._i + 1 : j], self._i + 1, j)
        self._emit(TokenKind.CloseBrace, "}", j, j + 1)
        self._i = j + 1


def _strip_blank_lines(code: str) -> str:
    """Remove the blank lines around a code block, keeping indentation of the first real line."""
    lines = code.split("\n")
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    return "\n".join(line.rstrip() for line in lines)


def tokenize(src: SourceText) -> List[Token]:
    return Lexer(src).tokenize()
