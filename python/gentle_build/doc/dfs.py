from typing import Any, Callable, Iterable, List, Tuple, Type

from gentle_build import BlockScope, InlineScope, Paragraph
from gentle_build.doc import Chapter, Document
from gentle_build.doc.user_nodes import UserNode

VisitorFilter = Tuple[Type[Any], ...] | Type[Any] | None
VisitorFunc = Callable[[Any], None]


class DocumentDfsPass:
    """A single depth-first, document-order walk calling every matching visitor on every node.

    Visitors are run in the order they were supplied, and all of them see a node before any of its children.
    The walk doesn't mutate anything itself - counting and collection state lives in the visitors."""

    visitors: List[Tuple[VisitorFilter, VisitorFunc]]

    def __init__(self, visitors: List[Tuple[VisitorFilter, VisitorFunc]]) -> None:
        self.visitors = visitors

    def dfs_over_document(self, document: Document) -> None:
        dfs_queue: List[Any] = []
        dfs_queue.extend(reversed(document.chapters))
        while dfs_queue:
            node = dfs_queue.pop()

            # Visit the node
            for v_type, v_f in self.visitors:
                if v_type is None or isinstance(node, v_type):
                    v_f(node)

            # Extract children as a reversed iterator.
            # reversed is important because we pop the last thing in the queue off first.
            children: Iterable[Any] | None = None
            if isinstance(node, Chapter):
                children = (node.contents,)
            elif isinstance(node, (BlockScope, InlineScope)):
                children = node.contents
            elif isinstance(node, Paragraph):
                children = (node.contents,)
            elif isinstance(node, UserNode):
                children = node.child_nodes()
            if children:
                dfs_queue.extend(reversed(tuple(children)))
