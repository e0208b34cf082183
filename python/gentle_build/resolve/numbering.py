import string
from dataclasses import dataclass
from typing import Dict, Protocol, Sequence, Tuple


class ManualNumbering(Protocol):
    def __getitem__(self, num: int) -> str: ...


class BasicManualNumbering(ManualNumbering):
    lookup: Sequence[str]

    def __init__(self, lookup: Sequence[str]) -> None:
        self.lookup = lookup

    def __getitem__(self, num: int) -> str:
        if num < 0:
            raise RuntimeError(f"Can't represent number {num} - too small")
        if num >= len(self.lookup):
            raise RuntimeError(f"Can't represent number {num} - too large")
        return self.lookup[num]


# Roman numbering based on https://www.geeksforgeeks.org/python-program-to-convert-integer-to-roman/
ROMAN_NUMBER_LOWER = [
    (1000, "m"),
    (900, "cm"),
    (500, "d"),
    (400, "cd"),
    (100, "c"),
    (90, "xc"),
    (50, "l"),
    (40, "xl"),
    (10, "x"),
    (9, "ix"),
    (5, "v"),
    (4, "iv"),
    (1, "i"),
]


class LowerRomanNumbering(ManualNumbering):
    def __getitem__(self, num: int) -> str:
        if num < 0:
            raise RuntimeError(f"Can't represent {num} with roman numerals")
        if num == 0:
            return "0"

        s = ""
        for divisor, roman in ROMAN_NUMBER_LOWER:
            s += roman * (num // divisor)
            num = num % divisor
        return s


class ArabicManualNumbering(ManualNumbering):
    def __getitem__(self, num: int) -> str:
        return str(num)


ARABIC_NUMBERING = ArabicManualNumbering()
LOWER_ROMAN_NUMBERING = LowerRomanNumbering()
LOWER_ALPH_NUMBERING = BasicManualNumbering("0" + string.ascii_lowercase)
UPPER_ALPH_NUMBERING = BasicManualNumbering("0" + string.ascii_uppercase)

# The LaTeX enumerate styles for each level of nesting: 1. (a) i. A.
ENUMERATE_NUMBERINGS: Tuple[ManualNumbering, ...] = (
    ARABIC_NUMBERING,
    LOWER_ALPH_NUMBERING,
    LOWER_ROMAN_NUMBERING,
    UPPER_ALPH_NUMBERING,
)


def enumerate_label(depth: int, num: int) -> str:
    """The item label for the `num`-th item of an enumerate nested `depth` levels deep (0 = outermost)."""
    numbering = ENUMERATE_NUMBERINGS[min(depth, len(ENUMERATE_NUMBERINGS) - 1)]
    if depth == 1:
        return f"({numbering[num]})"
    return f"{numbering[num]}."


@dataclass
class SimpleCounterFormat:
    """
    The formatting (name and numbering style) for a given counter, and how it's combined with other counters.
    """

    name: str
    """The name references use as a prefix e.g. for figures this would be 'Figure' to produce 'Figure 1'. Only the name of the last counter in the chain is used."""

    style: ManualNumbering = ARABIC_NUMBERING
    """The style of the numerical counter."""

    postfix_for_child: str = "."
    """When combined with a child counter, what should be placed between this counter and the child? e.g. for 'Section 3.2' the section counter has `postfix_for_child='.'`"""

    show_parents: bool = True
    """Whether the number includes the parent counters. Footnotes are counted per chapter but numbered '3', not '2.3'."""

    @classmethod
    def resolve(
        cls,
        counters: Sequence[Tuple["SimpleCounterFormat", int]],
        with_name: bool = True,
    ) -> str:
        if not counters[-1][0].show_parents:
            counters = counters[-1:]
        if with_name and counters[-1][0].name:
            c = counters[-1][0].name + " "
        else:
            c = ""
        prev_fmt = None
        for fmt, i in counters:
            if prev_fmt:
                c += prev_fmt.postfix_for_child
            c += fmt.style[i]
            prev_fmt = fmt
        return c


STD_COUNTER_FORMATS: Dict[str, SimpleCounterFormat] = {
    "chapter": SimpleCounterFormat("Chapter"),
    "section": SimpleCounterFormat("Section"),
    "subsection": SimpleCounterFormat("Section"),
    "subsubsection": SimpleCounterFormat("Section"),
    "figure": SimpleCounterFormat("Figure"),
    "equation": SimpleCounterFormat("Equation"),
    "footnote": SimpleCounterFormat("Footnote", show_parents=False),
}
