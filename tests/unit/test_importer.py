import pytest

from services.exceptions import CategoryCycleError
from services.pricebook.fields import DestinationField as F
from services.pricebook.importer import (
    ImportResult,
    PricebookImporter,
    collection_for_sheet,
    import_categories,
)
from services.pricebook.model import CategoryType
from test_helpers import categories_sheet


SERVICE_HEADERS = ["Name", "Category ID", "Code", "hours", "Use Dynamic Pricing", "Static Price", "Taxable"]


def workbook(**extra_sheets):
    categories = categories_sheet()
    sheets = {"Categories": (categories[0], categories[1:])}
    sheets.update(extra_sheets)
    return sheets


@pytest.mark.parametrize("sheet_name, collection", [
    ("Services", "services"),
    ("service list", "services"),
    ("Materials", "materials"),
    ("Equipment", "equipment"),
    ("Notes", None),
])
def test_collection_for_sheet(sheet_name, collection):
    assert collection_for_sheet(sheet_name) == collection


def test_import_categories_builds_documents():
    rows = categories_sheet()
    nodes, result = import_categories(rows[0], rows[1:])

    assert [n.id for n in nodes] == ["100", "101", "102", "200"]
    assert result.counts == {"categories": 4}
    parts = result.documents["categories"][3]
    assert parts["type"] == CategoryType.MATERIAL.value
    assert parts["path"] == ["Parts"]


def test_import_categories_cycle_propagates():
    with pytest.raises(CategoryCycleError):
        import_categories(["Id", "Category 1", "Category 2"], [["1", "A"], ["1", "A", "B"]])


class TestPricebookImporter:

    @pytest.fixture(autouse=True)
    def setup(self):
        self.importer = PricebookImporter()

    def test_services_sheet(self):
        rows = [
            ["Drain clean", "101", "SVC-1", 1.5, "Yes", 99, "Yes"],
            [None, "101", "SVC-2", 1, "Yes", 10, "No"],
            [None] * 7,
            ["Ghost job", "999", "SVC-3", 1, "No", 50, "No"],
        ]
        result = self.importer.import_workbook(workbook(Services=(SERVICE_HEADERS, rows)))
        services = {doc["id"]: doc for doc in result.documents["services"]}

        drain = services["SVC-1"]
        assert drain["name"] == "Drain clean"
        assert drain["categories"] == ["101"]
        assert drain["category1"] == "Plumbing"
        assert drain["category2"] == "Repair"
        assert drain["hours"] == 1.5
        assert drain["useDynamicPricing"] is True
        assert drain["staticPrice"] == 99.0
        assert drain["price"] == 99.0
        assert drain["taxable"] is True
        assert drain["active"] is True
        assert "categoryID" not in drain

        ghost = services["SVC-3"]
        assert ghost["categories"] == []
        assert ghost["useDynamicPricing"] is False

        assert result.errors == ['Row 3: Missing required field "Name" in sheet \'Services\'']
        assert result.warnings == [
            'Row 5: Unknown Category ID "999" in sheet \'Services\'; item imported uncategorized'
        ]

    def test_category_path_columns_resolve_to_existing_category(self):
        sheet = (["Material Name", "Category 1", "Cost", "Price"], [["Pipe", "parts", 3.5, 7]])
        result = self.importer.import_workbook(workbook(Materials=sheet))
        pipe = result.documents["materials"][0]

        assert pipe["categories"] == ["200"]
        assert pipe["cost"] == 3.5
        assert pipe["price"] == 7.0
        assert pipe["useDynamicPricing"] is True
        assert pipe["id"].startswith("mat_")

    def test_unknown_category_path_warns(self):
        sheet = (["Name", "Category 1", "Category 2"], [["Pipe", "Parts", "Fittings"]])
        result = self.importer.import_workbook(workbook(Materials=sheet))

        assert result.documents["materials"][0]["categories"] == []
        assert result.warnings == [
            "Row 2: Category path 'Parts > Fittings' in sheet 'Materials' not found; item imported uncategorized"
        ]

    def test_equipment_is_not_priced(self):
        result = self.importer.import_workbook(workbook(Equipment=(["Name", "Code"], [["Van", "EQ-1"]])))
        van = result.documents["equipment"][0]
        assert van["id"] == "EQ-1"
        assert "price" not in van
        assert "useDynamicPricing" not in van

    def test_unknown_sheet_is_skipped(self):
        result = self.importer.import_workbook(workbook(Notes=(["Name"], [["x"]])))
        assert set(result.documents) == {"categories"}
        assert result.warnings == ["Sheet 'Notes' skipped: not a Services, Materials or Equipment sheet"]

    def test_default_collection_for_unnamed_sheet(self):
        result = self.importer.import_workbook({"export": (["Name"], [["Filter"]])}, default_collection="materials")
        assert result.counts == {"materials": 1}

    def test_use_static_price_flag(self):
        headers = ["Name", "Use Static Price", "Static Price"]
        rows = [["A", "Yes", None], ["B", "Yes", 25], ["C", "No", 10]]
        result = self.importer.import_sheet("Services", headers, rows, "services")
        docs = {doc["name"]: doc for doc in result.documents["services"]}

        assert set(docs) == {"B", "C"}
        assert docs["B"]["useDynamicPricing"] is False
        assert docs["B"]["staticPrice"] == 25.0
        assert docs["C"]["useDynamicPricing"] is True
        assert result.errors == [
            'Row 2: Invalid or missing "Static Price" value when Use Static Price is enabled'
        ]

    def test_explicit_mapping_overrides_automap(self):
        headers = ["Title", "Ref", "Notes"]
        mapping = {"Title": F.NAME, "Ref": F.CODE, "Notes": None}
        result = self.importer.import_sheet("Services", headers, [["Leak fix", "LF-1", "ignored"]], "services",
                                            mapping=mapping)
        doc = result.documents["services"][0]
        assert doc["id"] == "LF-1"
        assert doc["name"] == "Leak fix"
        assert "notes" not in doc


def test_import_result_merge_and_to_dict():
    first = ImportResult()
    first.add("services", {"id": "a"})
    second = ImportResult(errors=["bad"], warnings=["odd"])
    second.add("services", {"id": "b"})
    first.merge(second)

    assert first.to_dict() == {"imported": {"services": 2}, "errors": ["bad"], "warnings": ["odd"]}
