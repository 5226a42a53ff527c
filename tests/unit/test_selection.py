import pytest
from dataclasses import replace

from services.exceptions import CategoryCycleError
from services.pricebook.model import CategoryType
from services.pricebook.selection import CategorySelection, CategoryTree
from test_helpers import make_node, plumbing_tree_nodes


@pytest.fixture
def tree():
    return CategoryTree(plumbing_tree_nodes())


class TestCategoryTree:

    def test_roots_and_children(self, tree):
        assert tree.roots() == ["1", "5"]
        assert tree.children_of("1") == ["2", "4"]
        assert tree.roots(CategoryType.MATERIAL) == ["5"]

    def test_descendants_are_depth_first(self, tree):
        assert tree.descendants("1") == ["2", "3", "4"]
        assert tree.descendants("3") == []

    def test_ancestors_root_first(self, tree):
        assert tree.ancestors("3") == ["1", "2"]
        assert tree.ancestors("1") == []

    def test_path_label(self, tree):
        assert tree.path_label("3") == "Plumbing > Repair > Leaks"
        assert tree.path_label("missing") == ""

    def test_unknown_parent_becomes_root(self):
        orphan = make_node("9", "Orphan")
        tree = CategoryTree([replace(orphan, parent_id="gone")])
        assert tree.roots() == ["9"]
        assert tree.parent_of("9") is None

    def test_cycle_is_rejected(self):
        a = make_node("a", "A")
        b = make_node("b", "B", a)
        looped = replace(a, parent_id="b")
        with pytest.raises(CategoryCycleError):
            CategoryTree([looped, b])

    def test_from_documents(self, tree):
        rebuilt = CategoryTree.from_documents(node.to_document() for node in tree)
        assert len(rebuilt) == 5
        assert rebuilt.path_label("3") == "Plumbing > Repair > Leaks"
        assert rebuilt.known(["3", "nope", "5"]) == ["3", "5"]


class TestCategorySelection:

    @pytest.fixture(autouse=True)
    def setup(self, tree):
        self.selection = CategorySelection(tree)

    def test_selecting_parent_selects_subtree_with_one_tag(self):
        self.selection.select("1")
        assert len(self.selection.selected) == 4
        assert set(self.selection.selected) == {"1", "2", "3", "4"}
        assert self.selection.display_tags() == ["1"]

    def test_removing_tag_clears_subtree(self):
        self.selection.select("1")
        self.selection.remove_tag("1")
        assert self.selection.selected == []
        assert self.selection.display_tags() == []

    def test_deselect_child_keeps_siblings(self):
        self.selection.select("1")
        self.selection.deselect("2")
        assert self.selection.selected == ["1", "4"]

    def test_toggle(self):
        self.selection.toggle("4")
        assert self.selection.is_selected("4")
        self.selection.toggle("4")
        assert not self.selection.is_selected("4")

    def test_tags_follow_selection_order(self):
        self.selection.select("5")
        self.selection.select("3")
        assert self.selection.display_tags() == ["5", "3"]

    def test_unknown_ids_are_ignored(self):
        self.selection.select("nope")
        self.selection.deselect("nope")
        assert self.selection.selected == []

    def test_ancestors_of_selection_are_expanded(self):
        self.selection.select("3")
        assert self.selection.expanded == {"1", "2"}
        assert self.selection.visible_children("2") == ["3"]
        assert self.selection.visible_children("4") == []

    def test_cannot_collapse_ancestor_of_selection(self):
        self.selection.select("3")
        assert self.selection.toggle_expanded("2") is False
        assert "2" in self.selection.expanded

        assert self.selection.toggle_expanded("4") is True
        assert "4" in self.selection.expanded
        assert self.selection.toggle_expanded("4") is True
        assert "4" not in self.selection.expanded

    def test_clear(self):
        self.selection.select("1")
        self.selection.clear()
        assert self.selection.selected == []

    def test_search_matches_full_path(self):
        assert self.selection.search("repair") == ["2", "3"]
        assert self.selection.search("PLUMBING > INSTALL") == ["4"]
        assert self.selection.search("  ") == []


def test_type_filter_limits_visible_nodes(tree):
    selection = CategorySelection(tree, selected=["5"], type_filter=CategoryType.MATERIAL)
    assert selection.visible_roots() == ["5"]
    assert selection.search("p") == ["5"]
    assert selection.selected == ["5"]
