from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session
from werkzeug.exceptions import BadRequest, Conflict, NotFound

from marketplace.models import Category
from marketplace.utils import parse_int, parse_text, slugify


class CategoryService:
    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def get_tree(self) -> List[Category]:
        """Active root categories; children are filtered when serialized."""
        return (
            self.db.query(Category)
            .filter(Category.parentID.is_(None), Category.is_active.is_(True))
            .order_by(Category.position, Category.name)
            .all()
        )

    def list_all(self) -> List[Category]:
        return self.db.query(Category).order_by(Category.position, Category.name).all()

    def get_category(self, category_id: int, active_only: bool = True) -> Category:
        category = self.db.get(Category, category_id)
        if category is None or (active_only and not category.is_active):
            raise NotFound("Category not found")
        return category

    def find_by_id_or_slug(self, value: str) -> Optional[Category]:
        if str(value).isdigit():
            return self.db.get(Category, int(value))
        return self.db.query(Category).filter_by(slug=value).first()

    def create(self, data: Dict[str, Any]) -> Category:
        name = parse_text(data.get("name"), "name")
        if not name:
            raise BadRequest("name is required")
        slug = slugify(parse_text(data.get("slug"), "slug") or name)
        self._ensure_slug_available(slug)

        category = Category(
            name=name,
            slug=slug,
            description=data.get("description"),
            position=parse_int(data.get("position", 0), "position", minimum=0),
            is_active=bool(data.get("is_active", True)),
        )
        if data.get("parent_id") is not None:
            category.parent = self.get_category(parse_int(data["parent_id"], "parent_id"), active_only=False)
        self.db.add(category)
        self.db.commit()
        self.logger.info("Category %s created", category.categoryID)
        return category

    def update(self, category_id: int, data: Dict[str, Any]) -> Category:
        category = self.get_category(category_id, active_only=False)
        if "name" in data:
            name = parse_text(data["name"], "name")
            if not name:
                raise BadRequest("name cannot be empty")
            category.name = name
        if data.get("slug"):
            slug = slugify(parse_text(data["slug"], "slug"))
            if slug != category.slug:
                self._ensure_slug_available(slug)
                category.slug = slug
        if "description" in data:
            category.description = data["description"]
        if "position" in data:
            category.position = parse_int(data["position"], "position", minimum=0)
        if "is_active" in data:
            category.is_active = bool(data["is_active"])
        if "parent_id" in data:
            category.parent = self._resolve_parent(category, data["parent_id"])
        self.db.commit()
        return category

    def remove(self, category_id: int) -> Category:
        category = self.get_category(category_id, active_only=False)
        category.is_active = False
        self.db.commit()
        self.logger.info("Category %s deactivated", category_id)
        return category

    def _resolve_parent(self, category: Category, parent_id: Any) -> Optional[Category]:
        if parent_id is None:
            return None
        parent = self.get_category(parse_int(parent_id, "parent_id"), active_only=False)
        ancestor = parent
        while ancestor is not None:
            if ancestor.categoryID == category.categoryID:
                raise BadRequest("A category cannot be its own ancestor")
            ancestor = ancestor.parent
        return parent

    def _ensure_slug_available(self, slug: str) -> None:
        if not slug:
            raise BadRequest("slug must contain letters or digits")
        if self.db.query(Category).filter_by(slug=slug).first() is not None:
            raise Conflict("Category slug already exists")
