from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from services.data_processing import update_table_history, get_last_upload_time
from services.database import DocumentStore, PRICEBOOK_COLLECTIONS
from services.exceptions import CategoryCycleError, DataProcessingError
from services.helper import new_document_id
from .importer import ImportResult
from .model import DEFAULT_RULE, CategoryNode, CategoryType, Material, PriceRule, Priority, Service
from .pricing import MarkupMode, PriceBreakdown, calculate_price, validate_markup_tiers
from .selection import CategoryTree


logger = logging.getLogger(__name__)

ITEM_COLLECTIONS = ("services", "materials", "equipment")


class PricebookRepository:
    """Pricebook reads and writes against the document store."""

    def __init__(self, store: DocumentStore, settings: Optional[Dict] = None):
        self.store = store
        self.settings = settings or {}

    # --- categories ------------------------------------------------------------

    def load_categories(self) -> List[CategoryNode]:
        return [CategoryNode.from_document(doc) for doc in self.store.all("categories")]

    def category_index(self) -> Dict[str, CategoryNode]:
        return {node.id: node for node in self.load_categories()}

    def tree(self) -> CategoryTree:
        return CategoryTree(self.load_categories())

    def create_category(self, name: str, parent_id: Optional[str] = None,
                        category_type: CategoryType = CategoryType.SERVICE,
                        description: str = "", category_id: Optional[str] = None) -> CategoryNode:
        name = (name or "").strip()
        if not name:
            raise DataProcessingError("Category name is required")

        parent = None
        if parent_id:
            parent = self.store.get("categories", parent_id)
            if parent is None:
                raise DataProcessingError(f"Parent category '{parent_id}' not found")
            parent = CategoryNode.from_document(parent)

        node = CategoryNode(
            id=category_id or new_document_id("cat"),
            name=name,
            parent_id=parent.id if parent else None,
            type=parent.type if parent else CategoryType.parse(category_type),
            path=(parent.path if parent else ()) + (name,),
            level=(parent.level + 1) if parent else 1,
            description=description or "",
        )
        self.store.put("categories", node.id, node.to_document())
        logger.info(f"Created category {node.id}: {' > '.join(node.path)}")
        return node

    def update_category(self, category_id: str, name: Optional[str] = None,
                        parent_id: Optional[str] = "", **changes) -> CategoryNode:
        """
        Rename and/or reparent a category, then refresh path and level for its whole subtree.

        `parent_id=""` leaves the parent alone; `None` makes the category a root.
        """
        tree = self.tree()
        node = tree.get(category_id)
        if node is None:
            raise DataProcessingError(f"Category '{category_id}' not found")

        new_parent = node.parent_id if parent_id == "" else parent_id
        if new_parent is not None:
            if new_parent not in tree:
                raise DataProcessingError(f"Parent category '{new_parent}' not found")
            if new_parent == category_id or new_parent in tree.descendants(category_id):
                raise CategoryCycleError(category_id, tree.ancestors(new_parent) + [new_parent])

        nodes = dict(tree.nodes)
        nodes[category_id] = replace(node, name=(name or node.name).strip(), parent_id=new_parent, **changes)
        refreshed = self._refresh_paths(nodes, [category_id] + tree.descendants(category_id))
        self.store.put_many("categories", [n.to_document() for n in refreshed])
        return refreshed[0]

    @staticmethod
    def _refresh_paths(nodes: Dict[str, CategoryNode], ids: List[str]) -> List[CategoryNode]:
        updated = []
        for node_id in ids:
            node = nodes[node_id]
            parent = nodes.get(node.parent_id) if node.parent_id else None
            path = (parent.path if parent else ()) + (node.name,)
            node = replace(node, path=path, level=len(path))
            nodes[node_id] = node
            updated.append(node)
        return updated

    def delete_category(self, category_id: str) -> Dict[str, int]:
        """
        Delete one category. Items and rules that referenced it keep existing with the id removed
        from their lists; child categories move up to the deleted category's parent.
        """
        tree = self.tree()
        node = tree.get(category_id)
        if node is None:
            raise DataProcessingError(f"Category '{category_id}' not found")

        relinked = {}
        for collection in ITEM_COLLECTIONS:
            docs = self.store.query(collection, "categories", category_id)
            for doc in docs:
                doc["categories"] = [c for c in doc.get("categories") or [] if c != category_id]
            self.store.put_many(collection, docs)
            relinked[collection] = len(docs)

        rules = self.store.query("price_rules", "assignedCategories", category_id)
        for doc in rules:
            doc["assignedCategories"] = [c for c in doc["assignedCategories"] if c != category_id]
        self.store.put_many("price_rules", rules)
        relinked["price_rules"] = len(rules)

        children = tree.children_of(category_id)
        nodes = dict(tree.nodes)
        for child_id in children:
            nodes[child_id] = replace(nodes[child_id], parent_id=node.parent_id)
        del nodes[category_id]
        moved = [i for child in children for i in [child] + tree.descendants(child)]
        self.store.put_many("categories", [n.to_document() for n in self._refresh_paths(nodes, moved)])
        relinked["categories"] = len(children)

        self.store.delete("categories", category_id)
        logger.info(f"Deleted category {category_id}; relinked {relinked}")
        return relinked

    # --- price rules -----------------------------------------------------------

    def rule_defaults(self) -> Dict:
        defaults = dict(DEFAULT_RULE)
        defaults.update(self.settings.get("rule_defaults") or {})
        return defaults

    def load_rules(self) -> List[PriceRule]:
        defaults = self.rule_defaults()
        return [PriceRule.from_document(doc, defaults) for doc in self.store.all("price_rules")]

    def save_rule(self, document: Dict) -> Tuple[PriceRule, List[str]]:
        """Store a rule (new when it has no id). Tier problems are logged and returned, not rejected."""
        document = dict(document)
        document.setdefault("id", new_document_id("rule"))
        rule = PriceRule.from_document(document, self.rule_defaults())

        warnings = validate_markup_tiers(rule.markup_tiers)
        for warning in warnings:
            logger.warning(f"Price rule {rule.id}: {warning}")

        self.store.put("price_rules", rule.id, rule.to_document())
        return rule, warnings

    # --- items -----------------------------------------------------------------

    def load_materials(self) -> Dict[str, Material]:
        return {doc["id"]: Material.from_document(doc) for doc in self.store.all("materials")}

    def price_service(self, service_id: str, priority: Priority = Priority.NORMAL,
                      markup_mode: MarkupMode = MarkupMode.TIERED) -> Optional[PriceBreakdown]:
        doc = self.store.get("services", service_id)
        if doc is None:
            return None
        return calculate_price(
            Service.from_document(doc),
            self.load_rules(),
            materials=self.load_materials(),
            categories=self.category_index(),
            priority=priority,
            markup_mode=markup_mode,
        )

    # --- imports ---------------------------------------------------------------

    def save_import(self, result: ImportResult) -> Dict[str, int]:
        saved = {}
        for collection, documents in result.documents.items():
            if collection not in PRICEBOOK_COLLECTIONS:
                logger.warning(f"Skipping unknown collection {collection}")
                continue
            self.store.put_many(collection, documents)
            update_table_history(self.store.db, collection)
            saved[collection] = len(documents)
        return saved

    def last_import(self, collection: str):
        return get_last_upload_time(self.store.db, collection)
