"""The table of known macros and environments, and the handlers for the standard set.

A handler receives the ChapterParser and the token that invoked it,
pulls whatever arguments it needs out of the parser, and returns the node it produced (or None).
"""

import re
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional, Sequence

from gentle_build import Block, Inline, LineBreak, Text
from gentle_build.doc.anchors import Anchor
from gentle_build.doc.nodes import (
    Bibliography,
    BibEntry,
    CitationUse,
    Figure,
    Footnote,
    Formatted,
    FormatType,
    Heading,
    ItemList,
    LabelDeclaration,
    Link,
    ListItem,
    ListType,
    MathDisplay,
    MathRow,
    NavigationMarker,
    NavPosition,
    Quote,
    ReferenceForm,
    ReferenceUse,
    heading_kind,
)
from gentle_build.expand.lexer import Token, TokenKind

if TYPE_CHECKING:
    from gentle_build.expand.parser import ChapterParser

BlockResult = Optional[Block | Sequence[Block]]
InlineMacroFunc = Callable[["ChapterParser", Token], Optional[Inline]]
BlockMacroFunc = Callable[["ChapterParser", Token], BlockResult]
EnvironmentFunc = Callable[["ChapterParser", Token], BlockResult]


class MacroKind(Enum):
    Inline = 0
    Block = 1
    """Block macros end the current paragraph, and can't appear inside inline content."""


class MacroTable:
    """Maps macro and environment names to their handlers.

    Like a DynDispatch keyed on name: registering two handlers for the same name is a conflict."""

    _inline_macros: Dict[str, InlineMacroFunc]
    _block_macros: Dict[str, BlockMacroFunc]
    _declarations: Dict[str, FormatType]
    _environments: Dict[str, EnvironmentFunc]

    def __init__(self) -> None:
        self._inline_macros = {}
        self._block_macros = {}
        self._declarations = {}
        self._environments = {}

    def _check_free(self, name: str) -> None:
        if (
            name in self._inline_macros
            or name in self._block_macros
            or name in self._declarations
        ):
            raise RuntimeError(f"Conflict: registered two handlers for macro '\\{name}'")

    def register_inline(self, name: str, f: InlineMacroFunc) -> None:
        self._check_free(name)
        self._inline_macros[name] = f

    def register_block(self, name: str, f: BlockMacroFunc) -> None:
        self._check_free(name)
        self._block_macros[name] = f

    def register_declaration(self, name: str, format_type: FormatType) -> None:
        """Register a declaration like {\\em ...}, which formats the rest of its enclosing group."""
        self._check_free(name)
        self._declarations[name] = format_type

    def register_environment(self, name: str, f: EnvironmentFunc) -> None:
        if name in self._environments:
            raise RuntimeError(
                f"Conflict: registered two handlers for environment '{name}'"
            )
        self._environments[name] = f

    def macro_kind(self, name: str) -> Optional[MacroKind]:
        if name in self._block_macros:
            return MacroKind.Block
        if name in self._inline_macros or name in self._declarations:
            return MacroKind.Inline
        return None

    def get_inline(self, name: str) -> Optional[InlineMacroFunc]:
        return self._inline_macros.get(name)

    def get_block(self, name: str) -> Optional[BlockMacroFunc]:
        return self._block_macros.get(name)

    def get_declaration(self, name: str) -> Optional[FormatType]:
        return self._declarations.get(name)

    def get_environment(self, name: str) -> Optional[EnvironmentFunc]:
        return self._environments.get(name)

    def macro_names(self) -> Iterable[str]:
        return (
            *self._inline_macros.keys(),
            *self._block_macros.keys(),
            *self._declarations.keys(),
        )


# Plain replacements for symbol macros
SYMBOLS: Dict[str, str] = {
    "S": "\u00a7",
    "ldots": "\u2026",
    "dots": "\u2026",
    "LaTeX": "LaTeX",
    "TeX": "TeX",
    "textbackslash": "\\",
    "textasciitilde": "~",
    "textbar": "|",
    "quad": " ",
    "qquad": " ",
}

# Layout commands which don't produce any content, and how many {} arguments they take
IGNORED_MACROS: Dict[str, int] = {
    "index": 1,
    "noindent": 0,
    "indent": 0,
    "medskip": 0,
    "bigskip": 0,
    "smallskip": 0,
    "newpage": 0,
    "clearpage": 0,
    "pagebreak": 0,
    "nopagebreak": 0,
    "linebreak": 0,
    "vspace": 1,
    "vspace*": 1,
    "hspace": 1,
    "hspace*": 1,
    "newblock": 0,
    "protect": 0,
    "sloppy": 0,
    "small": 0,
    "large": 0,
    "Large": 0,
    "normalsize": 0,
    "footnotesize": 0,
}

FORMAT_MACROS: Dict[str, FormatType] = {
    "emph": FormatType.Emph,
    "textit": FormatType.Italic,
    "textbf": FormatType.Bold,
    "texttt": FormatType.Typewriter,
    "textsl": FormatType.Slanted,
    "textrm": FormatType.Roman,
}

FORMAT_DECLARATIONS: Dict[str, FormatType] = {
    "em": FormatType.Emph,
    "it": FormatType.Italic,
    "bf": FormatType.Bold,
    "tt": FormatType.Typewriter,
    "sl": FormatType.Slanted,
    "rm": FormatType.Roman,
}

TITLE_DIRECTIVE = re.compile(r"^<title>(.*)</title>$")
MATH_LABEL = re.compile(r"\\label\s*\{([^}]*)\}")
NO_NUMBER = re.compile(r"\\(?:nonumber|notag)(?![a-zA-Z])")
ROW_SPACING = re.compile(r"\s*\[[^\]]*\]")
# Multi-line environments number every line, and are displayed through the equivalent inner environment
MULTILINE_MATH_ENVS = {"align": "aligned", "eqnarray": "aligned", "gather": "gathered"}


def std_macro_table() -> MacroTable:
    table = MacroTable()

    for weight, kind in enumerate(("section", "subsection", "subsubsection"), start=1):
        table.register_block(kind, _heading_handler(weight, numbered=True))
        table.register_block(f"{kind}*", _heading_handler(weight, numbered=False))
    table.register_block("caption", caption)
    table.register_block("item", _only_inside("\\item", "a list environment"))
    table.register_block("bibitem", _only_inside("\\bibitem", "a thebibliography environment"))
    table.register_block("par", lambda p, tok: None)

    table.register_inline("label", label)
    table.register_inline("ref", _reference_handler(ReferenceForm.Number))
    table.register_inline("autoref", _reference_handler(ReferenceForm.Name))
    table.register_inline("see", _reference_handler(ReferenceForm.See))
    table.register_inline("cite", cite)
    table.register_inline("footnote", footnote)
    table.register_inline("url", url)
    table.register_inline("href", href)
    table.register_inline("\\", line_break)
    table.register_inline("mbox", lambda p, tok: p.required_inlines(tok))
    table.register_inline("hbox", lambda p, tok: p.required_inlines(tok))
    for name, format_type in FORMAT_MACROS.items():
        table.register_inline(name, _format_handler(format_type))
    for name, format_type in FORMAT_DECLARATIONS.items():
        table.register_declaration(name, format_type)
    for name, symbol in SYMBOLS.items():
        table.register_inline(name, _symbol_handler(symbol))
    for name, n_args in IGNORED_MACROS.items():
        table.register_inline(name, _ignored_handler(n_args))

    table.register_environment("itemize", _list_handler(ListType.Itemize))
    table.register_environment("enumerate", _list_handler(ListType.Enumerate))
    table.register_environment("description", _list_handler(ListType.Description))
    table.register_environment("figure", figure)
    table.register_environment("figure*", figure)
    table.register_environment("quote", quote)
    table.register_environment("quotation", quote)
    table.register_environment("center", grouping)
    table.register_environment("flushleft", grouping)
    table.register_environment("flushright", grouping)
    table.register_environment("thebibliography", bibliography)

    return table


# Block macros


def _heading_handler(weight: int, numbered: bool) -> BlockMacroFunc:
    def heading(p: "ChapterParser", tok: Token) -> Block:
        # The short title for the table of contents isn't used
        p.optional_raw()
        anchor = None
        if numbered:
            anchor = p.anchors.new_anchor(heading_kind(weight))
            # Unnumbered headings don't capture labels, the same way LaTeX behaves
            p.current_target = anchor
        title = p.required_inlines(tok)
        return Heading(title=title, anchor=anchor, weight=weight, location=p.location(tok))

    return heading


def caption(p: "ChapterParser", tok: Token) -> None:
    if not p.open_figures:
        raise p.error("\\caption can only be used inside a figure", tok)
    p.optional_raw()
    p.open_figures[-1] = p.required_inlines(tok)
    return None


def _only_inside(macro: str, where: str) -> BlockMacroFunc:
    def handler(p: "ChapterParser", tok: Token) -> None:
        raise p.error(f"{macro} can only be used inside {where}", tok)

    return handler


# Inline macros


def label(p: "ChapterParser", tok: Token) -> Inline:
    key = p.required_raw(tok).strip()
    if not key:
        raise p.error("\\label needs a non-empty key", tok)
    return LabelDeclaration(key=key, target=p.current_target, location=p.location(tok))


def _reference_handler(form: ReferenceForm) -> InlineMacroFunc:
    def reference(p: "ChapterParser", tok: Token) -> Inline:
        key = p.required_raw(tok).strip()
        if not key:
            raise p.error(f"\\{tok.value} needs a non-empty key", tok)
        if form == ReferenceForm.See:
            key = p.reference_prefix + key
        return ReferenceUse(key=key, form=form, location=p.location(tok))

    return reference


def cite(p: "ChapterParser", tok: Token) -> Inline:
    note = p.optional_inlines()
    keys = tuple(k.strip() for k in p.required_raw(tok).split(",") if k.strip())
    if not keys:
        raise p.error("\\cite needs at least one key", tok)
    return CitationUse(keys=keys, note=note, location=p.location(tok))


def footnote(p: "ChapterParser", tok: Token) -> Inline:
    anchor = p.anchors.new_anchor("footnote")
    # A \label inside a footnote refers to the footnote
    with p.label_target(anchor):
        contents = p.required_inlines(tok)
    return Footnote(contents=contents, anchor=anchor, location=p.location(tok))


_URL_ESCAPE = re.compile(r"\\([%#&_~$])")


def url_argument(p: "ChapterParser", tok: Token) -> str:
    # As with hyperref, \% and friends stand for the bare character
    return _URL_ESCAPE.sub(r"\1", p.required_raw(tok).strip())


def url(p: "ChapterParser", tok: Token) -> Inline:
    return Link(url=url_argument(p, tok), label=None)


def href(p: "ChapterParser", tok: Token) -> Inline:
    target = url_argument(p, tok)
    return Link(url=target, label=p.required_inlines(tok))


def line_break(p: "ChapterParser", tok: Token) -> Inline:
    # \\[2pt] - the spacing is ignored
    p.optional_raw()
    return LineBreak()


def _format_handler(format_type: FormatType) -> InlineMacroFunc:
    def format_inlines(p: "ChapterParser", tok: Token) -> Inline:
        return Formatted(format_type=format_type, contents=p.required_inlines(tok))

    return format_inlines


def _symbol_handler(symbol: str) -> InlineMacroFunc:
    return lambda p, tok: Text(symbol)


def _ignored_handler(n_args: int) -> InlineMacroFunc:
    def ignored(p: "ChapterParser", tok: Token) -> None:
        for _ in range(n_args):
            p.required_raw(tok)
        return None

    return ignored


# Environments


def _list_handler(list_type: ListType) -> EnvironmentFunc:
    def item_list(p: "ChapterParser", tok: Token) -> Block:
        def ends_item(t: Token) -> bool:
            return (t.kind == TokenKind.EndEnv and t.value == tok.value) or (
                t.kind == TokenKind.Command and t.value == "item"
            )

        items: List[ListItem] = []
        while True:
            p.skip_blank()
            nxt = p.peek()
            if nxt is None:
                raise p.error(f"Unterminated {tok.value} environment", tok)
            if nxt.kind == TokenKind.EndEnv and nxt.value == tok.value:
                p.advance()
                break
            if not (nxt.kind == TokenKind.Command and nxt.value == "item"):
                raise p.error(f"Expected \\item in {tok.value} environment", nxt)
            p.advance()
            term = p.optional_inlines()
            contents = p.parse_blocks(stop=ends_item, opener=tok, what=f"{tok.value} environment")
            items.append(ListItem(term=term, contents=contents))
        return ItemList(list_type=list_type, items=tuple(items))

    return item_list


def figure(p: "ChapterParser", tok: Token) -> Block:
    # Placement specifier e.g. [htbp]
    p.optional_raw()
    anchor = p.anchors.new_anchor("figure")
    p.open_figures.append(None)
    try:
        with p.label_target(anchor):
            contents = p.parse_environment_body(tok)
    finally:
        caption_inlines = p.open_figures.pop()
    return Figure(anchor=anchor, contents=contents, caption=caption_inlines, location=p.location(tok))


def quote(p: "ChapterParser", tok: Token) -> Block:
    return Quote(contents=p.parse_environment_body(tok))


def grouping(p: "ChapterParser", tok: Token) -> Block:
    return p.parse_environment_body(tok)


def bibliography(p: "ChapterParser", tok: Token) -> Block:
    # \begin{thebibliography}{widest-label}
    p.required_raw(tok)

    def ends_entry(t: Token) -> bool:
        return (t.kind == TokenKind.EndEnv and t.value == tok.value) or (
            t.kind == TokenKind.Command and t.value == "bibitem"
        )

    entries: List[BibEntry] = []
    while True:
        p.skip_blank()
        nxt = p.peek()
        if nxt is None:
            raise p.error("Unterminated thebibliography environment", tok)
        if nxt.kind == TokenKind.EndEnv and nxt.value == tok.value:
            p.advance()
            break
        if not (nxt.kind == TokenKind.Command and nxt.value == "bibitem"):
            raise p.error("Expected \\bibitem in thebibliography environment", nxt)
        p.advance()
        # The printed label is replaced by our own numbering
        p.optional_raw()
        key = p.required_raw(nxt).strip()
        if not key:
            raise p.error("\\bibitem needs a non-empty key", nxt)
        text = p.parse_inline_run_until(ends_entry, opener=tok, what="thebibliography environment")
        entries.append(BibEntry(key=key, text=text, location=p.location(nxt)))
    return Bibliography(entries=tuple(entries))


# Tokens the lexer captures whole


def split_math_rows(tex: str) -> List[str]:
    """Split the body of an align-like environment on its top-level \\\\ line breaks, dropping empty lines."""
    rows: List[str] = []
    depth = 0
    start = 0
    i = 0
    while i < len(tex):
        if tex.startswith("\\\\", i) and depth == 0:
            rows.append(tex[start:i])
            spacing = ROW_SPACING.match(tex, i + 2)
            i = spacing.end() if spacing else i + 2
            start = i
            continue
        if tex.startswith("\\begin", i):
            depth += 1
        elif tex.startswith("\\end", i):
            depth -= 1
        if tex[i] == "\\":
            # Skip the escaped character, so \{ and \\ inside a group don't count
            i += 2
            continue
        if tex[i] == "{":
            depth += 1
        elif tex[i] == "}":
            depth -= 1
        i += 1
    rows.append(tex[start:])
    return [r for r in rows if r.strip()]


def _math_labels(p: "ChapterParser", tok: Token, tex: str, target: Anchor) -> List[Block]:
    labels: List[Block] = []
    for key in MATH_LABEL.findall(tex):
        key = key.strip()
        if not key:
            raise p.error("\\label needs a non-empty key", tok)
        labels.append(LabelDeclaration(key=key, target=target, location=p.location(tok)))
    return labels


def display_math(p: "ChapterParser", tok: Token) -> List[Block]:
    if tok.numbered and tok.env in MULTILINE_MATH_ENVS:
        return multiline_math(p, tok)
    tex = MATH_LABEL.sub("", tok.value).strip()
    anchor = p.anchors.new_anchor("equation") if tok.numbered else None
    target = anchor if anchor is not None else p.current_target
    return [
        MathDisplay(tex=tex, anchor=anchor, location=p.location(tok)),
        *_math_labels(p, tok, tok.value, target),
    ]


def multiline_math(p: "ChapterParser", tok: Token) -> List[Block]:
    rows: List[MathRow] = []
    labels: List[Block] = []
    target = p.current_target
    for row in split_math_rows(tok.value):
        anchor = None if NO_NUMBER.search(row) else p.anchors.new_anchor("equation")
        if anchor is not None:
            target = anchor
        # A \label on an unnumbered line refers to the last number, as in LaTeX
        labels.extend(_math_labels(p, tok, row, target))
        rows.append(MathRow(tex=NO_NUMBER.sub("", MATH_LABEL.sub("", row)).strip(), anchor=anchor))
    inner = MULTILINE_MATH_ENVS[tok.env]
    tex = f"\\begin{{{inner}}}" + " \\\\ ".join(r.tex for r in rows) + f"\\end{{{inner}}}"
    return [
        MathDisplay(tex=tex, anchor=None, location=p.location(tok), rows=tuple(rows)),
        *labels,
    ]


def directive(p: "ChapterParser", tok: Token) -> Optional[Block]:
    title = TITLE_DIRECTIVE.match(tok.value)
    if title:
        p.title = title.group(1).strip()
        return None
    if tok.value == "~header":
        return NavigationMarker(NavPosition.Header)
    if tok.value == "~footer":
        return NavigationMarker(NavPosition.Footer)
    # Other %** lines are directives for tools we don't emulate
    return None

