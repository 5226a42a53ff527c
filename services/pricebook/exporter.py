from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import Dict, List, Optional, Sequence

import pandas as pd

from services.excel import OpenPyXLFileHandler
from .fields import DestinationField as F
from .selection import CategoryTree


logger = logging.getLogger(__name__)

CURRENCY_COLUMNS = ("Price", "Cost", "Static Price", "Static Member Price")

SERVICE_COLUMNS_SIMPLE = ["Name", "Category ID", "Category", "Id", "Description", "Price", "Unit",
                          "Taxable", "Active"]
SERVICE_COLUMNS_DETAILED = SERVICE_COLUMNS_SIMPLE + ["Code", "Cost", "hours", "Use Dynamic Pricing",
                                                     "Static Price", "Linked Materials", "Tags"]
MATERIAL_COLUMNS_SIMPLE = ["Name", "Category ID", "Category", "Id", "Description", "Cost", "Price", "Unit",
                           "Taxable", "Active"]
MATERIAL_COLUMNS_DETAILED = MATERIAL_COLUMNS_SIMPLE + ["Code", "Tags"]
EQUIPMENT_COLUMNS = ["Name", "Category ID", "Category", "Id", "Code", "Description", "Active"]

# column header -> document key
_DOCUMENT_KEYS = {
    "Name": "name",
    "Id": "id",
    "Description": "description",
    "Price": "price",
    "Unit": "unit",
    "Code": "code",
    "Cost": "cost",
    "hours": "hours",
    "Static Price": "staticPrice",
}
_YES_NO = {"Taxable": "taxable", "Active": "active", "Use Dynamic Pricing": "useDynamicPricing"}


def _yes_no(value) -> str:
    return "Yes" if value else "No"


def _joined(value) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return "" if value is None else str(value)


@dataclass
class ExportOptions:
    include_inactive: bool = False
    include_metadata: bool = True
    separate_sheets: bool = True
    detailed: bool = True
    business_name: str = ""


class PricebookExporter:
    """Writes stored pricebook documents back out as a workbook or CSV."""

    def __init__(self, categories: Sequence[dict], services: Sequence[dict], materials: Sequence[dict],
                 equipment: Sequence[dict] = (), options: Optional[ExportOptions] = None):
        self.tree = CategoryTree.from_documents(categories)
        self.services = list(services)
        self.materials = list(materials)
        self.equipment = list(equipment)
        self.options = options or ExportOptions()

    # --- rows ------------------------------------------------------------------

    def _visible(self, items: Sequence[dict]) -> List[dict]:
        if self.options.include_inactive:
            return list(items)
        return [item for item in items if item.get("active", True)]

    def _item_row(self, item: dict, columns: Sequence[str]) -> list:
        category_ids = self.tree.known(item.get("categories") or [])
        first = category_ids[0] if category_ids else ""
        row = []
        for column in columns:
            if column == "Category ID":
                row.append(first)
            elif column == "Category":
                row.append(self.tree.path_label(first) if first else "")
            elif column in _YES_NO:
                row.append(_yes_no(item.get(_YES_NO[column], column == "Active")))
            elif column == "Linked Materials":
                row.append(_joined(item.get("materials")))
            elif column == "Tags":
                row.append(_joined(item.get("tags")))
            else:
                value = item.get(_DOCUMENT_KEYS.get(column, column))
                row.append("" if value is None else value)
        return row

    def service_columns(self) -> List[str]:
        return SERVICE_COLUMNS_DETAILED if self.options.detailed else SERVICE_COLUMNS_SIMPLE

    def material_columns(self) -> List[str]:
        return MATERIAL_COLUMNS_DETAILED if self.options.detailed else MATERIAL_COLUMNS_SIMPLE

    def service_rows(self) -> List[list]:
        return [self._item_row(s, self.service_columns()) for s in self._visible(self.services)]

    def material_rows(self) -> List[list]:
        return [self._item_row(m, self.material_columns()) for m in self._visible(self.materials)]

    def equipment_rows(self) -> List[list]:
        return [self._item_row(e, EQUIPMENT_COLUMNS) for e in self._visible(self.equipment)]

    def category_columns(self) -> List[str]:
        depth = max((len(self.tree.ancestors(node.id)) + 1 for node in self.tree), default=1)
        levels = [f"Category {n}" for n in range(1, depth + 1)]
        return ["Category ID"] + levels + ["Category Type", "Description", "Active"]

    def category_rows(self) -> List[list]:
        """One row per category, parents before children, each row spelling out its full path."""
        depth = len(self.category_columns()) - 4
        rows = []
        for root in self.tree.roots():
            for node_id in [root] + self.tree.descendants(root):
                node = self.tree.get(node_id)
                names = [self.tree.get(a).name for a in self.tree.ancestors(node_id)] + [node.name]
                names += [""] * (depth - len(names))
                rows.append([node.id] + names + [node.type.value.title(), node.description, _yes_no(node.active)])
        return rows

    def metadata_rows(self) -> List[list]:
        active_services = [s for s in self.services if s.get("active", True)]
        active_materials = [m for m in self.materials if m.get("active", True)]
        return [
            ["Export Date", datetime.now().strftime("%Y-%m-%d %H:%M")],
            ["Business Name", self.options.business_name or "Unknown"],
            ["Total Services", len(self.services)],
            ["Active Services", len(active_services)],
            ["Total Materials", len(self.materials)],
            ["Active Materials", len(active_materials)],
            ["Total Equipment", len(self.equipment)],
            ["Total Categories", len(self.tree)],
            ["Export Format", "detailed" if self.options.detailed else "simple"],
            ["Include Inactive", _yes_no(self.options.include_inactive)],
            ["Separate Sheets", _yes_no(self.options.separate_sheets)],
        ]

    def combined_columns(self) -> List[str]:
        columns = ["Type"]
        for column in self.service_columns() + self.material_columns() + EQUIPMENT_COLUMNS:
            if column not in columns:
                columns.append(column)
        return columns

    def combined_rows(self) -> List[list]:
        columns = self.combined_columns()
        rows = []
        for label, items in (("Service", self.services), ("Material", self.materials),
                             ("Equipment", self.equipment)):
            for item in self._visible(items):
                rows.append([label] + self._item_row(item, columns[1:]))
        return rows

    # --- outputs ---------------------------------------------------------------

    def to_workbook(self) -> OpenPyXLFileHandler:
        sheets_data: Dict[str, list] = {}
        headers: Dict[str, list] = {}

        if self.options.separate_sheets:
            sheets_data["Services"], headers["Services"] = self.service_rows(), self.service_columns()
            sheets_data["Materials"], headers["Materials"] = self.material_rows(), self.material_columns()
            if self.equipment:
                sheets_data["Equipment"], headers["Equipment"] = self.equipment_rows(), EQUIPMENT_COLUMNS
        else:
            sheets_data["Pricebook"], headers["Pricebook"] = self.combined_rows(), self.combined_columns()

        if self.options.include_metadata:
            sheets_data["Export Info"], headers["Export Info"] = self.metadata_rows(), ["Property", "Value"]

        sheets_data["Categories"], headers["Categories"] = self.category_rows(), self.category_columns()

        logger.info(f"Exporting pricebook: {', '.join(f'{k}={len(v)}' for k, v in sheets_data.items())}")
        return OpenPyXLFileHandler.from_sheets_data(
            sheets_data,
            {"headers": headers, "header_row": 1, "currency_columns": CURRENCY_COLUMNS},
        )

    def to_xlsx_bytes(self) -> BytesIO:
        return self.to_workbook().to_bytes()

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(self.combined_rows(), columns=self.combined_columns())

    def to_csv_bytes(self) -> BytesIO:
        output = BytesIO()
        output.write(self.to_dataframe().to_csv(index=False).encode("utf-8-sig"))
        output.seek(0)
        return output


README_LINES = [
    "This workbook has one sheet per kind of record:",
    "- Categories: Category ID, then Category 1, Category 2, ... spelling out the full path",
    "- Services: Name is required; Category ID links the service to a category",
    "- Materials: Name is required; Category ID links the material to a category",
    "- Equipment: Name is required",
    "",
    "Categories:",
    "- Give every level its own row, parents above children",
    "- Category Type is Service, Material or Equipment (Service when blank)",
    "",
    "Pricing:",
    "- Use Dynamic Pricing = Yes lets price rules set the price",
    "- Use Dynamic Pricing = No keeps Static Price",
    "- hours is the labor time a service takes",
    "",
    "Import order: Categories first, then the item sheets.",
    "Rows with an unknown Category ID are imported without a category and reported as warnings.",
]

TEMPLATE_CATEGORIES = [
    ["CAT-001", "Plumbing", "", "", "Service", "Plumbing work", "Yes"],
    ["CAT-002", "Plumbing", "Repair", "", "Service", "Plumbing repairs", "Yes"],
    ["CAT-003", "Plumbing", "Repair", "Leaks", "Service", "Leak repairs", "Yes"],
    ["CAT-004", "Parts", "", "", "Material", "Stocked parts", "Yes"],
]

TEMPLATE_ITEM_COLUMNS = {
    "Services": [F.NAME, F.CATEGORY_ID, F.CODE, F.DESCRIPTION, F.HOURS, F.USE_DYNAMIC_PRICING, F.STATIC_PRICE,
                 F.COST, F.UNIT, F.TAXABLE, F.ACTIVE, F.ALLOW_DISCOUNTS, F.TAGS],
    "Materials": [F.NAME, F.CATEGORY_ID, F.CODE, F.DESCRIPTION, F.COST, F.PRICE, F.UNIT, F.TAXABLE, F.ACTIVE],
    "Equipment": [F.NAME, F.CATEGORY_ID, F.CODE, F.DESCRIPTION, F.ACTIVE],
}

TEMPLATE_EXAMPLES = {
    F.NAME: "Example Item",
    F.CATEGORY_ID: "CAT-003",
    F.CODE: "EX-001",
    F.DESCRIPTION: "Example description",
    F.HOURS: 1.5,
    F.USE_DYNAMIC_PRICING: "Yes",
    F.STATIC_PRICE: 99.99,
    F.PRICE: 99.99,
    F.COST: 50.00,
    F.UNIT: "each",
    F.TAXABLE: "Yes",
    F.ACTIVE: "Yes",
    F.ALLOW_DISCOUNTS: "Yes",
}


def generate_template() -> OpenPyXLFileHandler:
    """Blank import workbook: README, an example Categories sheet and one example row per item sheet."""
    sheets_data = {"README": [[line] for line in README_LINES]}
    headers = {"README": ["Pricebook Import Template"]}

    sheets_data["Categories"] = TEMPLATE_CATEGORIES
    headers["Categories"] = ["Category ID", "Category 1", "Category 2", "Category 3", "Category Type",
                             "Description", "Active"]

    for sheet_name, columns in TEMPLATE_ITEM_COLUMNS.items():
        if sheet_name == "Materials":
            example = [TEMPLATE_EXAMPLES.get(c, "") if c != F.CATEGORY_ID else "CAT-004" for c in columns]
        else:
            example = [TEMPLATE_EXAMPLES.get(c, "") for c in columns]
        sheets_data[sheet_name] = [example]
        headers[sheet_name] = [c.value for c in columns]

    return OpenPyXLFileHandler.from_sheets_data(
        sheets_data,
        {"headers": headers, "header_row": 1, "currency_columns": CURRENCY_COLUMNS},
    )
