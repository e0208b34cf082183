from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from gentle_build.doc.anchors import Anchor

CounterChainValue = Tuple[Tuple[str, int], ...]
"""
The chain of counters, where element [-1] is the main counter for this value
and [-2], [-3]... are parent, grandparent... counters etc.
Each element of this tuple is a pair (counter_anchor_kind, value).
"""


@dataclass
class DocCounter:
    anchor_kind: str
    subcounters: List["DocCounter"]

    value: int = 0

    def __init__(
        self,
        anchor_kind: str,
        subcounters: List["DocCounter"],
    ) -> None:
        super().__init__()
        self.anchor_kind = anchor_kind
        self.subcounters = subcounters

    def increment(self) -> int:
        self.value += 1
        for c in self.subcounters:
            c.reset()
        return self.value

    def reset(self) -> None:
        self.value = 0
        for c in self.subcounters:
            c.reset()


CounterHierarchy = Dict[str, "CounterHierarchy"]

STD_COUNTER_HIERARCHY: CounterHierarchy = {
    # Footnotes restart in every chapter
    "chapter": {"footnote": {}},
    # Sections are numbered continuously through the document, like an article split over several files
    "section": {"subsection": {"subsubsection": {}}},
    "figure": {},
    "equation": {},
}


class CounterState:
    # The roots of the tree of counters
    counter_tree_roots: List[DocCounter]
    # Mapping of Anchor.kind to the chain of Counters.
    # e.g. if Section -> Subsection -> Subsubsection,
    # then anchor_kind_to_parent_chain[subsubsection] = (SectionCounter, SubsectionCounter, SubsubsectionCounter)
    anchor_kind_to_parent_chain: Mapping[str, Tuple[DocCounter, ...]]
    anchor_counters: Dict[Anchor, CounterChainValue]

    def __init__(self, expected_counter_hierarchy: CounterHierarchy) -> None:
        self.counter_tree_roots = CounterState._build_counter_tree(
            expected_counter_hierarchy
        )
        self.anchor_kind_to_parent_chain = {}
        CounterState._build_anchor_kind_lookup(
            self.anchor_kind_to_parent_chain, [], self.counter_tree_roots
        )
        self.anchor_counters = {}

    @staticmethod
    def _build_counter_tree(hierarchy: CounterHierarchy) -> List[DocCounter]:
        return [
            DocCounter(parent_counter, CounterState._build_counter_tree(child_counters))
            for parent_counter, child_counters in hierarchy.items()
        ]

    @staticmethod
    def _build_anchor_kind_lookup(
        lookup: Dict[str, Tuple[DocCounter, ...]],
        parents: Sequence[DocCounter],
        cs: List[DocCounter],
    ) -> None:
        for c in cs:
            if c.anchor_kind in lookup:
                raise RuntimeError(f"Counter {c.anchor_kind} declared twice")
            chain: Tuple[DocCounter, ...] = (*parents, c)
            lookup[c.anchor_kind] = chain
            CounterState._build_anchor_kind_lookup(
                lookup, parents=chain, cs=c.subcounters
            )

    def anchor_kinds(self) -> Iterable[str]:
        return self.anchor_kind_to_parent_chain.keys()

    def count_anchor(self, anchor: Anchor) -> None:
        if anchor.kind not in self.anchor_kind_to_parent_chain:
            raise ValueError(f"Unknown counter kind '{anchor.kind}'")
        if anchor in self.anchor_counters:
            raise ValueError(f"Anchor {anchor} counted twice")
        parent_chain = self.anchor_kind_to_parent_chain[anchor.kind]

        # The one at the end of the chain is the counter for this anchor kind
        parent_chain[-1].increment()

        self.anchor_counters[anchor] = tuple(
            (c.anchor_kind, c.value) for c in parent_chain
        )

