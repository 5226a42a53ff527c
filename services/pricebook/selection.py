from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Set

from services.exceptions import CategoryCycleError
from .model import CategoryNode, CategoryType


logger = logging.getLogger(__name__)

PATH_SEPARATOR = " > "


class CategoryTree:
    """
    Read-only arena of category nodes with a parent -> children index built once.

    Nodes whose parent is not in the arena are treated as roots. Construction fails with
    CategoryCycleError if any parent chain loops back on itself.
    """

    def __init__(self, nodes: Iterable[CategoryNode]):
        self.nodes: Dict[str, CategoryNode] = {}
        for node in nodes:
            self.nodes[node.id] = node

        self._children: Dict[Optional[str], List[str]] = {None: []}
        for node in self.nodes.values():
            parent = node.parent_id if node.parent_id in self.nodes else None
            self._children.setdefault(parent, []).append(node.id)

        for node_id in self.nodes:
            self.ancestors(node_id)

    @classmethod
    def from_documents(cls, documents: Iterable[dict]) -> "CategoryTree":
        return cls(CategoryNode.from_document(doc) for doc in documents)

    def __contains__(self, node_id) -> bool:
        return node_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self):
        return iter(self.nodes.values())

    def get(self, node_id: str) -> Optional[CategoryNode]:
        return self.nodes.get(node_id)

    def parent_of(self, node_id: str) -> Optional[str]:
        node = self.nodes.get(node_id)
        if node is None or node.parent_id not in self.nodes:
            return None
        return node.parent_id

    def roots(self, category_type: Optional[CategoryType] = None) -> List[str]:
        return self._filtered(self._children[None], category_type)

    def children_of(self, node_id: str, category_type: Optional[CategoryType] = None) -> List[str]:
        return self._filtered(self._children.get(node_id, []), category_type)

    def _filtered(self, ids: List[str], category_type: Optional[CategoryType]) -> List[str]:
        if category_type is None:
            return list(ids)
        return [i for i in ids if self.nodes[i].type == category_type]

    def descendants(self, node_id: str) -> List[str]:
        """All nodes below `node_id`, depth-first in sibling order."""
        result = []
        stack = list(reversed(self._children.get(node_id, [])))
        while stack:
            current = stack.pop()
            result.append(current)
            stack.extend(reversed(self._children.get(current, [])))
        return result

    def ancestors(self, node_id: str) -> List[str]:
        """Ancestor ids, root first."""
        chain = []
        cursor = self.parent_of(node_id)
        while cursor is not None:
            if cursor == node_id or cursor in chain:
                raise CategoryCycleError(node_id, list(reversed(chain)))
            chain.append(cursor)
            cursor = self.parent_of(cursor)
        chain.reverse()
        return chain

    def path_label(self, node_id: str, separator: str = PATH_SEPARATOR) -> str:
        if node_id not in self.nodes:
            return ""
        names = [self.nodes[i].name for i in self.ancestors(node_id)]
        names.append(self.nodes[node_id].name)
        return separator.join(names)

    def known(self, ids: Iterable[str]) -> List[str]:
        return [i for i in ids if i in self.nodes]


class CategorySelection:
    """
    Multi-select over a CategoryTree.

    Selecting a node selects its whole subtree and deselecting removes the whole subtree.
    After every selection change each ancestor of a selected node is expanded. Unknown ids
    are ignored everywhere.
    """

    def __init__(self, tree: CategoryTree, selected: Iterable[str] = (),
                 type_filter: Optional[CategoryType] = None):
        self.tree = tree
        self.type_filter = type_filter
        self._selected: Dict[str, None] = {}    # insertion order = selection order
        self.expanded: Set[str] = set()
        for node_id in selected:
            self.select(node_id)

    @property
    def selected(self) -> List[str]:
        return list(self._selected)

    def is_selected(self, node_id: str) -> bool:
        return node_id in self._selected

    def select(self, node_id: str):
        if node_id not in self.tree:
            logger.debug(f"Ignoring select of unknown category {node_id}")
            return
        for i in [node_id] + self.tree.descendants(node_id):
            self._selected.setdefault(i, None)
        self._expand_to_selection()

    def deselect(self, node_id: str):
        if node_id not in self.tree:
            return
        for i in [node_id] + self.tree.descendants(node_id):
            self._selected.pop(i, None)
        self._expand_to_selection()

    def toggle(self, node_id: str):
        if self.is_selected(node_id):
            self.deselect(node_id)
        else:
            self.select(node_id)

    def remove_tag(self, node_id: str):
        self.deselect(node_id)

    def clear(self):
        self._selected.clear()

    def display_tags(self) -> List[str]:
        """Selected ids that have no selected ancestor, in selection order."""
        return [
            node_id for node_id in self._selected
            if not any(a in self._selected for a in self.tree.ancestors(node_id))
        ]

    def _expand_to_selection(self):
        for node_id in self._selected:
            self.expanded.update(self.tree.ancestors(node_id))

    def toggle_expanded(self, node_id: str) -> bool:
        """
        Expand or collapse one node. Collapsing a node that has a selected descendant is
        refused (returns False) so the selection stays visible.
        """
        if node_id not in self.tree:
            return False
        if node_id not in self.expanded:
            self.expanded.add(node_id)
            return True
        if any(node_id in self.tree.ancestors(s) for s in self._selected):
            return False
        self.expanded.discard(node_id)
        return True

    def visible_roots(self) -> List[str]:
        return self.tree.roots(self.type_filter)

    def visible_children(self, node_id: str) -> List[str]:
        if node_id not in self.expanded:
            return []
        return self.tree.children_of(node_id, self.type_filter)

    def path_label(self, node_id: str) -> str:
        return self.tree.path_label(node_id)

    def search(self, text: str) -> List[str]:
        """Ids whose 'A > B > C' label contains `text`, case-insensitively."""
        needle = (text or "").strip().lower()
        if not needle:
            return []
        return [
            node.id for node in self.tree
            if (self.type_filter is None or node.type == self.type_filter)
            and needle in self.tree.path_label(node.id).lower()
        ]
