import pytest

from services.exceptions import CategoryCycleError
from services.pricebook.hierarchy import (
    CategoryHierarchyBuilder,
    HierarchyMode,
    build_category_tree,
    category_type_from_label,
    detect_mode,
)
from services.pricebook.model import CategoryType


FILL_DOWN_HEADERS = ["Category 1", "Category 2", "Category 3"]


def test_detect_mode():
    assert detect_mode(["Category ID", "Category 1"]) == HierarchyMode.EXPLICIT_ID
    assert detect_mode(["Id", "Category 1"]) == HierarchyMode.EXPLICIT_ID
    assert detect_mode(FILL_DOWN_HEADERS) == HierarchyMode.FILL_DOWN
    assert detect_mode([]) == HierarchyMode.FILL_DOWN


def test_fill_down_inherits_parent_path():
    rows = [
        ["Plumbing", None, None],
        [None, "Repair", None],
        [None, None, "Leaks"],
        [None, None, "Clogs"],
        [None, "Install", None],
        ["Electrical", None, None],
    ]
    nodes = build_category_tree(FILL_DOWN_HEADERS, rows)
    by_name = {n.name: n for n in nodes}

    assert len(nodes) == 6
    assert by_name["Leaks"].path == ("Plumbing", "Repair", "Leaks")
    assert by_name["Clogs"].path == ("Plumbing", "Repair", "Clogs")
    assert by_name["Clogs"].parent_id == by_name["Repair"].id
    assert by_name["Install"].parent_id == by_name["Plumbing"].id
    assert by_name["Install"].level == 2
    assert by_name["Electrical"].parent_id is None


def test_fill_down_shallower_row_ends_deeper_branch():
    rows = [
        ["Plumbing", None, None],
        [None, "Repair", None],
        [None, None, "Leaks"],
        ["Electrical", None, None],
        [None, None, "Orphan"],
    ]
    nodes = build_category_tree(FILL_DOWN_HEADERS, rows)
    orphan = nodes[-1]
    # the Repair cursor was cleared by the Electrical row
    assert orphan.parent_id is None
    assert orphan.path == ("Electrical", "Orphan")


def test_fill_down_ids_are_sequential_and_blank_rows_skipped():
    rows = [["Plumbing", None], ["  ", None], [None, "Repair"]]
    nodes = build_category_tree(["Category 1", "Category 2"], rows)
    assert [n.id for n in nodes] == ["cat_1", "cat_2"]


def test_fill_down_repeated_numeric_id_is_skipped():
    builder = CategoryHierarchyBuilder.for_headers(["Category 1", "Category 2"])
    nodes = builder.build([["100", None], [None, "Sub"], ["100", None]])

    assert [n.id for n in nodes] == ["100", "cat_1"]
    assert nodes[1].parent_id == "100"
    assert builder.warnings == ["Row 4: duplicate category id '100' skipped"]


def test_explicit_id_siblings_do_not_cross_link():
    headers = ["Category ID", "Category 1", "Category 2"]
    rows = [[1, "A"], [2, "A", "B"], [3, "A", "C"]]
    nodes = build_category_tree(headers, rows)
    by_id = {n.id: n for n in nodes}

    assert by_id["2"].parent_id == "1"
    assert by_id["3"].parent_id == "1"
    assert by_id["3"].path == ("A", "C")
    assert by_id["1"].level == 1
    assert by_id["3"].level == 2


def test_explicit_id_does_not_fill_down():
    headers = ["Category ID", "Category 1", "Category 2", "Category 3"]
    rows = [
        ["1", "A", None, None],
        ["2", "A", "B", None],
        ["3", "A", "B", "C"],
        ["4", None, None, "D"],
    ]
    nodes = build_category_tree(headers, rows)
    by_id = {n.id: n for n in nodes}

    assert by_id["3"].parent_id == "2"
    # blanks are not inherited, so row 4 has no matching parent row
    assert by_id["4"].parent_id is None
    assert by_id["4"].path == ("D",)


def test_explicit_id_duplicate_is_skipped_with_warning():
    builder = CategoryHierarchyBuilder.for_headers(["Category ID", "Category 1"])
    nodes = builder.build([["1", "A"], ["1", "B"]])

    assert [n.name for n in nodes] == ["A"]
    assert builder.warnings == ["Row 3: duplicate category id '1' skipped"]


def test_explicit_id_cycle_raises():
    headers = ["Category ID", "Category 1", "Category 2"]
    with pytest.raises(CategoryCycleError) as excinfo:
        build_category_tree(headers, [["1", "A"], ["1", "A", "B"]])
    assert excinfo.value.category_id == "1"
    assert excinfo.value.ancestor_ids == ["1"]


def test_type_description_and_active_columns():
    headers = ["Category ID", "Category 1", "Category Type", "Description", "Active"]
    rows = [["7", "Parts", "Materials", "Stock parts", "No"]]
    node = build_category_tree(headers, rows)[0]

    assert node.type == CategoryType.MATERIAL
    assert node.description == "Stock parts"
    assert node.active is False


def test_default_type_applies_without_type_column():
    builder = CategoryHierarchyBuilder.for_headers(FILL_DOWN_HEADERS, default_type=CategoryType.EQUIPMENT)
    assert builder.build([["Trucks", None, None]])[0].type == CategoryType.EQUIPMENT


def test_max_levels_limits_category_columns():
    headers = ["Category 1", "Category 2", "Category 3"]
    builder = CategoryHierarchyBuilder.for_headers(headers, max_levels=2)
    assert builder.category_columns == [0, 1]

    nodes = builder.build([["A", None, None], [None, "B", "ignored"]])
    assert nodes[-1].name == "B"


@pytest.mark.parametrize("label, expected", [
    ("Materials", CategoryType.MATERIAL),
    ("material", CategoryType.MATERIAL),
    ("Equipment", CategoryType.EQUIPMENT),
    ("Service", CategoryType.SERVICE),
    ("", CategoryType.SERVICE),
    (None, CategoryType.SERVICE),
])
def test_category_type_from_label(label, expected):
    assert category_type_from_label(label) == expected
