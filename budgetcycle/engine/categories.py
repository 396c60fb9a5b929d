"""Two-tier category grouping.

Categories arrive as a flat list with parent references. One grouping pass
turns them into top-level nodes with their direct children. Deeper nesting
is not modelled.
"""

import logging
from collections.abc import Iterable

from pydantic import BaseModel, Field

from budgetcycle.core.models import Category

logger = logging.getLogger(__name__)


class CategoryNode(BaseModel):
    """A top-level category and its children."""

    category: Category
    children: list[Category] = Field(default_factory=list)

    @property
    def id(self) -> str:
        return self.category.id

    @property
    def has_children(self) -> bool:
        return bool(self.children)


class CategoryTree(BaseModel):
    """Result of grouping a flat category list."""

    top_level: list[CategoryNode] = Field(default_factory=list)
    orphan_ids: list[str] = Field(default_factory=list)

    def get(self, category_id: str) -> Category | None:
        for node in self.top_level:
            if node.category.id == category_id:
                return node.category
            for child in node.children:
                if child.id == category_id:
                    return child
        return None

    def node(self, category_id: str) -> CategoryNode | None:
        for node in self.top_level:
            if node.category.id == category_id:
                return node
        return None

    def children_of(self, category_id: str) -> list[Category]:
        node = self.node(category_id)
        return list(node.children) if node else []

    def parent_of(self, category_id: str) -> Category | None:
        for node in self.top_level:
            if any(child.id == category_id for child in node.children):
                return node.category
        return None

    def is_leaf(self, category_id: str) -> bool:
        node = self.node(category_id)
        if node is not None:
            return not node.has_children
        return self.get(category_id) is not None

    def leaves(self) -> list[Category]:
        """Categories with no children, in tree order."""
        result: list[Category] = []
        for node in self.top_level:
            if node.children:
                result.extend(node.children)
            else:
                result.append(node.category)
        return result

    def all_categories(self) -> list[Category]:
        result: list[Category] = []
        for node in self.top_level:
            result.append(node.category)
            result.extend(node.children)
        return result


def build_category_tree(categories: Iterable[Category]) -> CategoryTree:
    """Group a flat category list into top-level nodes with children.

    A category whose parent_id does not resolve to a top-level category
    (missing, itself, or another child) is folded into the top level as an
    orphan instead of failing.

    Args:
        categories: Flat list of one owner's categories.

    Returns:
        CategoryTree preserving input order.
    """
    # First occurrence of an id wins.
    unique: dict[str, Category] = {}
    for cat in categories:
        if cat.id in unique:
            logger.warning(f"category_duplicate_id: id={cat.id}")
            continue
        unique[cat.id] = cat
    top_level_ids = {cat.id for cat in unique.values() if not cat.parent_id}

    nodes: dict[str, CategoryNode] = {}
    order: list[str] = []
    orphan_ids: list[str] = []
    children: list[Category] = []

    for cat in unique.values():
        if not cat.parent_id:
            nodes[cat.id] = CategoryNode(category=cat)
            order.append(cat.id)
        elif cat.parent_id != cat.id and cat.parent_id in top_level_ids:
            children.append(cat)
        else:
            logger.warning(f"category_orphan: id={cat.id} parent_id={cat.parent_id}")
            orphan_ids.append(cat.id)
            nodes[cat.id] = CategoryNode(category=cat)
            order.append(cat.id)

    for child in children:
        nodes[child.parent_id].children.append(child)  # type: ignore[index]

    return CategoryTree(top_level=[nodes[cid] for cid in order], orphan_ids=orphan_ids)
