"""Tests for category grouping."""

from budgetcycle.core.models import Category
from budgetcycle.engine.categories import build_category_tree


def _cat(cid: str, parent_id: str | None = None) -> Category:
    return Category(id=cid, name=cid.title(), parent_id=parent_id)


class TestBuildCategoryTree:
    """Tests for build_category_tree function."""

    def test_empty(self) -> None:
        """No categories gives an empty tree."""
        tree = build_category_tree([])
        assert tree.top_level == []
        assert tree.leaves() == []

    def test_groups_children_under_parents(self) -> None:
        """Children are attached to their top-level parent."""
        tree = build_category_tree(
            [_cat("groceries"), _cat("produce", "groceries"), _cat("meat", "groceries"), _cat("rent")]
        )
        assert [node.id for node in tree.top_level] == ["groceries", "rent"]
        assert [c.id for c in tree.children_of("groceries")] == ["produce", "meat"]
        assert tree.children_of("rent") == []

    def test_child_before_parent_in_input(self) -> None:
        """Input order of parent and child does not matter."""
        tree = build_category_tree([_cat("produce", "groceries"), _cat("groceries")])
        assert [node.id for node in tree.top_level] == ["groceries"]
        assert [c.id for c in tree.children_of("groceries")] == ["produce"]

    def test_missing_parent_becomes_top_level(self) -> None:
        """A dangling parent reference is folded into the top level."""
        tree = build_category_tree([_cat("groceries"), _cat("snacks", "deleted")])
        assert [node.id for node in tree.top_level] == ["groceries", "snacks"]
        assert tree.orphan_ids == ["snacks"]

    def test_self_parent_becomes_top_level(self) -> None:
        """A category pointing at itself does not crash."""
        tree = build_category_tree([_cat("loop", "loop")])
        assert [node.id for node in tree.top_level] == ["loop"]
        assert tree.orphan_ids == ["loop"]

    def test_grandchild_is_folded(self) -> None:
        """Only two tiers: a child of a child becomes top-level."""
        tree = build_category_tree(
            [_cat("groceries"), _cat("produce", "groceries"), _cat("apples", "produce")]
        )
        assert [node.id for node in tree.top_level] == ["groceries", "apples"]
        assert [c.id for c in tree.children_of("groceries")] == ["produce"]

    def test_leaves(self) -> None:
        """Parents with children are not leaves."""
        tree = build_category_tree(
            [_cat("groceries"), _cat("produce", "groceries"), _cat("meat", "groceries"), _cat("rent")]
        )
        assert [c.id for c in tree.leaves()] == ["produce", "meat", "rent"]
        assert not tree.is_leaf("groceries")
        assert tree.is_leaf("produce")
        assert tree.is_leaf("rent")
        assert not tree.is_leaf("unknown")

    def test_lookup_helpers(self) -> None:
        """get and parent_of resolve both tiers."""
        tree = build_category_tree([_cat("groceries"), _cat("produce", "groceries")])
        assert tree.get("produce").name == "Produce"  # type: ignore[union-attr]
        assert tree.get("missing") is None
        assert tree.parent_of("produce").id == "groceries"  # type: ignore[union-attr]
        assert tree.parent_of("groceries") is None

    def test_duplicate_ids_keep_first(self) -> None:
        """Duplicate ids are ignored after the first occurrence."""
        tree = build_category_tree([_cat("rent"), Category(id="rent", name="Other")])
        assert len(tree.all_categories()) == 1
        assert tree.get("rent").name == "Rent"  # type: ignore[union-attr]

    def test_duplicate_id_resolved_before_grouping(self) -> None:
        """A later top-level duplicate does not adopt children of its own."""
        tree = build_category_tree([_cat("t"), _cat("p", "t"), _cat("p"), _cat("c", "p")])

        assert tree.parent_of("p").id == "t"  # type: ignore[union-attr]
        assert tree.orphan_ids == ["c"]
        assert [node.category.id for node in tree.top_level] == ["t", "c"]
        assert [c.id for c in tree.leaves()] == ["p", "c"]
