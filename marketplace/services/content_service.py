from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Type, Union

from sqlalchemy import func
from sqlalchemy.orm import Session
from werkzeug.exceptions import BadRequest, Conflict, NotFound

from marketplace.models import BlogPost, ContentStatus, Page, utcnow
from marketplace.services.pagination import PageResult, paginate
from marketplace.utils import parse_enum, parse_int, parse_text, sanitize_html, sanitize_text, slugify

ContentModel = Union[Page, BlogPost]

PAGE_FIELDS = ("title", "content", "meta_title", "meta_description")
POST_FIELDS = ("title", "excerpt", "content", "featured_image", "author")
RICH_TEXT_FIELDS = frozenset({"content"})
PLAIN_TEXT_FIELDS = frozenset({"excerpt", "meta_description"})


class ContentService:
    """CMS pages and blog posts. Only published entries are visible publicly."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    # Pages ---------------------------------------------------------------
    def get_published_page(self, slug: str) -> Page:
        return self._get_published(Page, slug, "Page not found")

    def list_pages(self) -> List[Page]:
        return self.db.query(Page).order_by(Page.created_at.desc(), Page.pageID.desc()).all()

    def create_page(self, data: Dict[str, Any]) -> Page:
        return self._create(Page, PAGE_FIELDS, data)

    def update_page(self, page_id: int, data: Dict[str, Any]) -> Page:
        return self._update(self._get(Page, page_id, "Page not found"), PAGE_FIELDS, data)

    def delete_page(self, page_id: int) -> None:
        self._delete(self._get(Page, page_id, "Page not found"))

    # Blog ----------------------------------------------------------------
    def list_published_posts(self, page: int, limit: int, tag: Optional[str] = None) -> PageResult:
        query = self.db.query(BlogPost).filter(BlogPost.status == ContentStatus.PUBLISHED)
        if tag:
            tag = tag.strip().lower()
            # Comma-delimited storage; pad both sides so "py" does not match "python".
            padded = "," + func.coalesce(BlogPost._tags, "") + ","
            query = query.filter(padded.like(f"%,{tag},%"))
        query = query.order_by(BlogPost.published_at.desc(), BlogPost.postID.desc())
        return paginate(query, page, limit)

    def get_published_post(self, slug: str) -> BlogPost:
        return self._get_published(BlogPost, slug, "Blog post not found")

    def list_posts(self) -> List[BlogPost]:
        return self.db.query(BlogPost).order_by(BlogPost.created_at.desc(), BlogPost.postID.desc()).all()

    def create_post(self, data: Dict[str, Any]) -> BlogPost:
        return self._create(BlogPost, POST_FIELDS, data)

    def update_post(self, post_id: int, data: Dict[str, Any]) -> BlogPost:
        return self._update(self._get(BlogPost, post_id, "Blog post not found"), POST_FIELDS, data)

    def delete_post(self, post_id: int) -> None:
        self._delete(self._get(BlogPost, post_id, "Blog post not found"))

    # Shared --------------------------------------------------------------
    def _create(self, model: Type[ContentModel], fields, data: Dict[str, Any]) -> ContentModel:
        title = parse_text(data.get("title"), "title")
        if not title:
            raise BadRequest("title is required")
        slug = slugify(parse_text(data.get("slug"), "slug") or title)
        self._ensure_slug_available(model, slug)

        entry = model(slug=slug, status=ContentStatus.DRAFT)
        self._assign(entry, fields, data)
        self.db.add(entry)
        self.db.commit()
        self.logger.info("%s %s created", model.__name__, entry.slug)
        return entry

    def _update(self, entry: ContentModel, fields, data: Dict[str, Any]) -> ContentModel:
        if data.get("slug"):
            slug = slugify(parse_text(data["slug"], "slug"))
            if slug != entry.slug:
                self._ensure_slug_available(type(entry), slug)
                entry.slug = slug
        self._assign(entry, fields, data)
        if not entry.title:
            raise BadRequest("title cannot be empty")
        self.db.commit()
        return entry

    def _assign(self, entry: ContentModel, fields, data: Dict[str, Any]) -> None:
        for field in fields:
            if field not in data:
                continue
            value = data[field]
            if field == "title":
                value = parse_text(value, "title")
            elif field in RICH_TEXT_FIELDS:
                value = sanitize_html(value)
            elif field in PLAIN_TEXT_FIELDS:
                value = sanitize_text(value)
            setattr(entry, field, value)
        if isinstance(entry, BlogPost) and "tags" in data:
            if not isinstance(data["tags"], list):
                raise BadRequest("tags must be a list")
            entry.tags = data["tags"]
        if "status" in data:
            entry.status = parse_enum(ContentStatus, data["status"], "status")
        if entry.status == ContentStatus.PUBLISHED and entry.published_at is None:
            entry.published_at = utcnow()

    def _delete(self, entry: ContentModel) -> None:
        self.db.delete(entry)
        self.db.commit()

    def _get(self, model: Type[ContentModel], entry_id: Any, message: str) -> ContentModel:
        entry = self.db.get(model, parse_int(entry_id, "id"))
        if entry is None:
            raise NotFound(message)
        return entry

    def _get_published(self, model: Type[ContentModel], slug: str, message: str) -> ContentModel:
        entry = (
            self.db.query(model)
            .filter(model.slug == slug, model.status == ContentStatus.PUBLISHED)
            .first()
        )
        if entry is None:
            raise NotFound(message)
        return entry

    def _ensure_slug_available(self, model: Type[ContentModel], slug: str) -> None:
        if not slug:
            raise BadRequest("slug must contain letters or digits")
        if self.db.query(model).filter_by(slug=slug).first() is not None:
            raise Conflict(f"{model.__name__} slug already exists")
