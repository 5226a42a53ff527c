from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from services.data_processing import cell_text, clean_value, is_blank_row, safe_float, to_bool
from services.helper import new_document_id
from .fields import (
    CATEGORY_LEVEL_FIELDS,
    DestinationField as F,
    FieldAutoMapper,
    FieldMappingSession,
    MappedRecord,
    normalize_field,
)
from .hierarchy import CategoryHierarchyBuilder, DEFAULT_MAX_LEVELS, HierarchyMode
from .model import CategoryNode, CategoryType


logger = logging.getLogger(__name__)

CATEGORIES_SHEET = "Categories"

# sheet name prefix -> collection
ITEM_SHEETS = {
    "service": "services",
    "material": "materials",
    "equipment": "equipment",
}

ID_PREFIXES = {"services": "svc", "materials": "mat", "equipment": "eqp"}

BOOLEAN_FIELDS = (
    F.TAXABLE, F.ACTIVE, F.ALLOW_DISCOUNTS, F.ALLOW_MEMBERSHIP_DISCOUNTS, F.LABOR_SERVICE,
    F.EXCLUDE_FROM_PRICEBOOK_WIZARD, F.USE_DYNAMIC_PRICING, F.PAY_TECH_SPECIFIC_BONUS, F.PAYS_COMMISSION,
)

NUMERIC_FIELDS = (
    F.PRICE, F.STATIC_PRICE, F.STATIC_MEMBER_PRICE, F.STATIC_ADD_ON_PRICE, F.STATIC_MEMBER_ADD_ON_PRICE,
    F.COST, F.ESTIMATED_LABOR_COST, F.HOURS, F.COMMISSION_PERCENTAGE, F.BONUS_PERCENTAGE,
)

# Older exports carry the inverse flag; it has no destination field of its own.
USE_STATIC_PRICE_KEY = "usestaticprice"


@dataclass
class ImportResult:
    documents: Dict[str, List[dict]] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add(self, collection: str, document: dict):
        self.documents.setdefault(collection, []).append(document)

    def merge(self, other: "ImportResult"):
        for collection, docs in other.documents.items():
            self.documents.setdefault(collection, []).extend(docs)
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)

    @property
    def counts(self) -> Dict[str, int]:
        return {collection: len(docs) for collection, docs in self.documents.items()}

    def to_dict(self) -> Dict:
        return {"imported": self.counts, "errors": self.errors, "warnings": self.warnings}


def _is_valid_amount(value) -> bool:
    text = cell_text(value)
    if not text:
        return False
    try:
        return float(text) >= 0
    except ValueError:
        return False


def collection_for_sheet(sheet_name: str) -> Optional[str]:
    key = cell_text(sheet_name).lower()
    for prefix, collection in ITEM_SHEETS.items():
        if key.startswith(prefix):
            return collection
    return None


def import_categories(headers: Sequence, rows: Sequence[Sequence],
                      mode: Optional[HierarchyMode] = None,
                      max_levels: int = DEFAULT_MAX_LEVELS,
                      default_type: CategoryType = CategoryType.SERVICE) -> Tuple[List[CategoryNode], ImportResult]:
    """Build category nodes from a categories sheet. CategoryCycleError propagates."""
    builder = CategoryHierarchyBuilder.for_headers(headers, max_levels=max_levels, mode=mode,
                                                   default_type=default_type)
    nodes = builder.build(rows)
    result = ImportResult(warnings=list(builder.warnings))
    for node in nodes:
        result.add("categories", node.to_document())
    logger.info(f"Built {len(nodes)} categories ({builder.mode.value})")
    return nodes, result


class PricebookImporter:
    """
    Turns item sheets into catalog documents.

    `categories` is the id -> node index the items are checked against (stored categories plus
    any imported in the same workbook). Unknown category references leave the item
    uncategorized with a warning; rows without a name are rejected with an error.
    """

    def __init__(self, categories: Optional[Mapping[str, CategoryNode]] = None,
                 mapper: Optional[FieldAutoMapper] = None,
                 max_levels: int = DEFAULT_MAX_LEVELS):
        self.categories: Dict[str, CategoryNode] = dict(categories or {})
        self.mapper = mapper or FieldAutoMapper()
        self.max_levels = max_levels
        self._by_path = {}
        self._index_paths()

    def _index_paths(self):
        self._by_path = {}
        for node in self.categories.values():
            self._by_path.setdefault(tuple(p.lower() for p in node.path), node.id)

    def add_categories(self, nodes: Sequence[CategoryNode]):
        for node in nodes:
            self.categories[node.id] = node
        self._index_paths()

    def import_workbook(self, sheets: Mapping[str, Tuple[list, list]],
                        mappings: Optional[Mapping[str, Mapping[str, Optional[F]]]] = None,
                        default_collection: Optional[str] = None) -> ImportResult:
        """
        Import every recognised sheet. A 'Categories' sheet is read first so items in the
        same workbook can reference it. Sheets that are neither categories nor items are
        skipped with a warning unless `default_collection` says where they go.
        """
        result = ImportResult()
        mappings = mappings or {}

        for sheet_name, (headers, rows) in sheets.items():
            if cell_text(sheet_name).lower() == CATEGORIES_SHEET.lower():
                nodes, category_result = import_categories(headers, rows, max_levels=self.max_levels)
                self.add_categories(nodes)
                result.merge(category_result)

        for sheet_name, (headers, rows) in sheets.items():
            if cell_text(sheet_name).lower() == CATEGORIES_SHEET.lower():
                continue
            collection = collection_for_sheet(sheet_name) or default_collection
            if collection is None:
                result.warnings.append(f"Sheet '{sheet_name}' skipped: not a Services, Materials or Equipment sheet")
                continue
            result.merge(self.import_sheet(sheet_name, headers, rows, collection, mappings.get(sheet_name)))

        return result

    def import_sheet(self, sheet_name: str, headers: Sequence, rows: Sequence[Sequence], collection: str,
                     mapping: Optional[Mapping[str, Optional[F]]] = None) -> ImportResult:
        header_names = [cell_text(h) for h in headers]
        if mapping is None:
            session = FieldMappingSession.from_proposal(self.mapper.automap(header_names))
            for dest, sources in session.conflicts().items():
                logger.info(f"Sheet '{sheet_name}': '{dest.value}' matched {sources}; using '{sources[0]}'")
        else:
            session = FieldMappingSession.from_proposal(mapping)

        static_flag_column = next(
            (h for h in header_names if normalize_field(h) == USE_STATIC_PRICE_KEY), None
        )

        result = ImportResult()
        for row_number, row in enumerate(rows, start=2):  # row 1 is the header
            if is_blank_row(row):
                continue
            raw = {
                header: clean_value(row[i]) if i < len(row) else None
                for i, header in enumerate(header_names) if header
            }
            record = session.map_row(raw, sheet=sheet_name, row_number=row_number)
            document = self._transform(record, collection, raw.get(static_flag_column), result)
            if document is not None:
                result.add(collection, document)

        logger.info(f"Sheet '{sheet_name}': {len(result.documents.get(collection, []))} {collection} rows, "
                    f"{len(result.errors)} errors, {len(result.warnings)} warnings")
        return result

    def _resolve_categories(self, record: MappedRecord, result: ImportResult) -> List[str]:
        category_id = record.text(F.CATEGORY_ID)
        if category_id:
            if category_id in self.categories:
                return [category_id]
            result.warnings.append(
                f'Row {record.row}: Unknown Category ID "{category_id}" in sheet '
                f'\'{record.sheet}\'; item imported uncategorized'
            )
            return []

        path = record.category_path()
        if not path:
            return []
        match = self._by_path.get(tuple(p.lower() for p in path))
        if match:
            return [match]
        result.warnings.append(
            f"Row {record.row}: Category path '{' > '.join(path)}' in sheet '{record.sheet}' "
            f"not found; item imported uncategorized"
        )
        return []

    def _transform(self, record: MappedRecord, collection: str, use_static_flag,
                   result: ImportResult) -> Optional[dict]:
        name = record.text(F.NAME)
        if not name:
            result.errors.append(f'Row {record.row}: Missing required field "Name" in sheet \'{record.sheet}\'')
            return None

        document = record.to_document()
        for dest in BOOLEAN_FIELDS:
            if dest in record.values:
                document[dest.document_key] = to_bool(record.values[dest])
        for dest in NUMERIC_FIELDS:
            if dest in record.values:
                document[dest.document_key] = safe_float(record.values[dest])
        for dest in CATEGORY_LEVEL_FIELDS:
            document.pop(dest.document_key, None)
        document.pop(F.CATEGORY_ID.document_key, None)

        document["name"] = name
        document["categories"] = self._resolve_categories(record, result)
        for level, label in enumerate(self._category_levels(document["categories"]), start=1):
            document[f"category{level}"] = label
        document.setdefault("active", True)

        if collection != "equipment":
            if not self._apply_pricing(record, use_static_flag, document, result):
                return None

        document["id"] = (
            record.text(F.ID) or record.text(F.CODE) or new_document_id(ID_PREFIXES.get(collection, ""))
        )
        return document

    def _category_levels(self, category_ids: List[str]) -> List[str]:
        if not category_ids:
            return []
        return list(self.categories[category_ids[0]].path)

    def _apply_pricing(self, record: MappedRecord, use_static_flag, document: dict,
                       result: ImportResult) -> bool:
        static_value = record.values.get(F.STATIC_PRICE)
        if cell_text(use_static_flag) != "":
            use_static = to_bool(use_static_flag)
            if use_static and not _is_valid_amount(static_value):
                result.errors.append(
                    f'Row {record.row}: Invalid or missing "Static Price" value when Use Static Price is enabled'
                )
                return False
            document["useDynamicPricing"] = not use_static
        elif F.USE_DYNAMIC_PRICING in record.values:
            document["useDynamicPricing"] = to_bool(record.values[F.USE_DYNAMIC_PRICING])
        else:
            document["useDynamicPricing"] = True

        if cell_text(static_value) != "":
            price = safe_float(static_value)
        else:
            price = safe_float(record.values.get(F.PRICE))
        document["staticPrice"] = price
        document["price"] = price
        return True
