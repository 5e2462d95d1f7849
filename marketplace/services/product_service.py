from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload
from werkzeug.exceptions import BadRequest, Conflict, Forbidden, NotFound

from marketplace.config import Config
from marketplace.models import (
    CartItem,
    Category,
    OrderItem,
    Product,
    ProductImage,
    ProductStatus,
    ProductVariant,
    Vendor,
    VendorStatus,
    WishlistItem,
)
from marketplace.observability import increment_counter
from marketplace.services.pagination import PageResult, paginate
from marketplace.utils import parse_enum, parse_int, parse_money, parse_text, slugify

SORT_OPTIONS = {
    "price_asc": (Product.base_price.asc(), Product.productID.asc()),
    "price_desc": (Product.base_price.desc(), Product.productID.desc()),
    "rating": (Product.average_rating.desc(), Product.review_count.desc(), Product.productID.desc()),
    "newest": (Product.created_at.desc(), Product.productID.desc()),
}


class ProductService:
    """Catalog management for vendors, the public storefront and admins."""

    def __init__(self, db_session: Session, config: type[Config] = Config) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Public storefront
    # ------------------------------------------------------------------
    def list_public(
        self,
        page: int,
        limit: int,
        q: Optional[str] = None,
        category: Optional[str] = None,
        vendor: Optional[str] = None,
        min_price: Optional[str] = None,
        max_price: Optional[str] = None,
        featured: Optional[bool] = None,
        sort: Optional[str] = None,
    ) -> PageResult:
        query = (
            self._with_relations(self.db.query(Product))
            .join(Vendor, Product.vendorID == Vendor.vendorID)
            .filter(Product.status == ProductStatus.ACTIVE, Vendor.status == VendorStatus.APPROVED)
        )
        if q:
            pattern = f"%{q.strip()}%"
            query = query.filter(or_(Product.title.ilike(pattern), Product.description.ilike(pattern)))
        if category:
            query = query.join(Category, Product.categoryID == Category.categoryID)
            if str(category).isdigit():
                query = query.filter(Category.categoryID == int(category))
            else:
                query = query.filter(Category.slug == category)
        if vendor:
            if str(vendor).isdigit():
                query = query.filter(Vendor.vendorID == int(vendor))
            else:
                query = query.filter(Vendor.slug == vendor)
        if min_price not in (None, ""):
            query = query.filter(Product.base_price >= parse_money(min_price, "min_price", allow_zero=True))
        if max_price not in (None, ""):
            query = query.filter(Product.base_price <= parse_money(max_price, "max_price", allow_zero=True))
        if featured is not None:
            query = query.filter(Product.is_featured.is_(featured))

        sort_key = sort or "newest"
        if sort_key not in SORT_OPTIONS:
            raise BadRequest(f"sort must be one of: {', '.join(SORT_OPTIONS)}")
        return paginate(query.order_by(*SORT_OPTIONS[sort_key]), page, limit)

    def get_public(self, id_or_slug: str) -> Product:
        query = self._with_relations(self.db.query(Product))
        if str(id_or_slug).isdigit():
            product = query.filter(Product.productID == int(id_or_slug)).first()
        else:
            product = query.filter(Product.slug == id_or_slug).first()
        if product is None or not product.is_active or not product.vendor.is_approved:
            raise NotFound("Product not found")
        return product

    def list_for_vendor_storefront(self, vendor_id: int, page: int, limit: int) -> PageResult:
        vendor = self.db.get(Vendor, vendor_id)
        if vendor is None or not vendor.is_approved:
            raise NotFound("Vendor not found")
        query = self._with_relations(self.db.query(Product)).filter(
            Product.vendorID == vendor_id,
            Product.status == ProductStatus.ACTIVE,
        )
        return paginate(query.order_by(*SORT_OPTIONS["newest"]), page, limit)

    # ------------------------------------------------------------------
    # Vendor catalog
    # ------------------------------------------------------------------
    def list_own(self, vendor: Vendor, page: int, limit: int, status: Optional[str] = None) -> PageResult:
        query = self._with_relations(self.db.query(Product)).filter(Product.vendorID == vendor.vendorID)
        if status:
            query = query.filter(Product.status == parse_enum(ProductStatus, status, "status"))
        return paginate(query.order_by(*SORT_OPTIONS["newest"]), page, limit)

    def create(self, vendor: Vendor, data: Dict[str, Any]) -> Product:
        title = parse_text(data.get("title"), "title")
        if not title:
            raise BadRequest("title is required")
        if data.get("base_price") is None:
            raise BadRequest("base_price is required")
        slug = slugify(parse_text(data.get("slug"), "slug") or title)
        self._ensure_slug_available(slug)

        product = Product(
            vendorID=vendor.vendorID,
            title=title,
            slug=slug,
            description=data.get("description"),
            base_price=parse_money(data["base_price"], "base_price"),
            currency=(data.get("currency") or self.config.DEFAULT_CURRENCY).upper(),
            sku=data.get("sku"),
            stock=parse_int(data.get("stock", 0), "stock", minimum=0),
            status=parse_enum(ProductStatus, data.get("status") or ProductStatus.DRAFT.value, "status"),
            is_featured=False,
        )
        if data.get("category_id") is not None:
            product.category = self._get_active_category(data["category_id"])
        for variant_data in data.get("variants") or []:
            product.variants.append(self._build_variant(variant_data))
        product.images = self._build_images(data.get("images") or [])

        self.db.add(product)
        self.db.commit()
        increment_counter("products_created_total")
        self.logger.info("Product %s created", product.productID, extra={"vendor_id": vendor.vendorID})
        return product

    def update(self, vendor: Vendor, product_id: int, data: Dict[str, Any]) -> Product:
        product = self._get_owned(vendor, product_id)
        self._apply_changes(product, data)
        self.db.commit()
        return product

    def archive(self, vendor: Vendor, product_id: int) -> Product:
        product = self._get_owned(vendor, product_id)
        product.status = ProductStatus.ARCHIVED
        self.db.commit()
        self.logger.info("Product %s archived", product_id)
        return product

    def add_variant(self, vendor: Vendor, product_id: int, data: Dict[str, Any]) -> ProductVariant:
        product = self._get_owned(vendor, product_id)
        variant = self._build_variant(data)
        product.variants.append(variant)
        self.db.commit()
        return variant

    def update_variant(
        self, vendor: Vendor, product_id: int, variant_id: int, data: Dict[str, Any]
    ) -> ProductVariant:
        variant = self._get_owned_variant(vendor, product_id, variant_id)
        if "name" in data:
            name = parse_text(data["name"], "name")
            if not name:
                raise BadRequest("name cannot be empty")
            variant.name = name
        if "sku" in data:
            variant.sku = data["sku"]
        if "price" in data:
            variant.price = None if data["price"] is None else parse_money(data["price"], "price")
        if "stock" in data:
            variant.stock = parse_int(data["stock"], "stock", minimum=0)
        if "attributes" in data:
            variant.attributes = self._validate_attributes(data["attributes"])
        self.db.commit()
        return variant

    def delete_variant(self, vendor: Vendor, product_id: int, variant_id: int) -> None:
        variant = self._get_owned_variant(vendor, product_id, variant_id)
        self.db.query(CartItem).filter(CartItem.variantID == variant_id).delete(synchronize_session=False)
        self.db.query(OrderItem).filter(OrderItem.variantID == variant_id).update(
            {OrderItem.variantID: None}, synchronize_session=False
        )
        variant.product.variants.remove(variant)
        self.db.commit()

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------
    def list_admin(
        self,
        page: int,
        limit: int,
        status: Optional[str] = None,
        vendor_id: Optional[int] = None,
        q: Optional[str] = None,
    ) -> PageResult:
        query = self._with_relations(self.db.query(Product))
        if status:
            query = query.filter(Product.status == parse_enum(ProductStatus, status, "status"))
        if vendor_id is not None:
            query = query.filter(Product.vendorID == vendor_id)
        if q:
            query = query.filter(Product.title.ilike(f"%{q.strip()}%"))
        return paginate(query.order_by(*SORT_OPTIONS["newest"]), page, limit)

    def admin_update(self, product_id: int, data: Dict[str, Any]) -> Product:
        product = self.get_any(product_id)
        self._apply_changes(product, data)
        if "is_featured" in data:
            product.is_featured = bool(data["is_featured"])
        self.db.commit()
        return product

    def admin_delete(self, product_id: int) -> None:
        product = self.get_any(product_id)
        variant_ids = [variant.variantID for variant in product.variants]
        self.db.query(CartItem).filter(CartItem.productID == product_id).delete(synchronize_session=False)
        self.db.query(WishlistItem).filter(WishlistItem.productID == product_id).delete(
            synchronize_session=False
        )
        self.db.query(OrderItem).filter(OrderItem.productID == product_id).update(
            {OrderItem.productID: None, OrderItem.variantID: None}, synchronize_session=False
        )
        if variant_ids:
            self.db.query(OrderItem).filter(OrderItem.variantID.in_(variant_ids)).update(
                {OrderItem.variantID: None}, synchronize_session=False
            )
        self.db.delete(product)
        self.db.commit()
        self.logger.info("Product %s deleted by admin", product_id)

    def get_any(self, product_id: int) -> Product:
        product = self.db.get(Product, product_id)
        if product is None:
            raise NotFound("Product not found")
        return product

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _with_relations(query):
        return query.options(
            selectinload(Product.variants),
            selectinload(Product.images),
            selectinload(Product.vendor),
            selectinload(Product.category),
        )

    def _get_owned(self, vendor: Vendor, product_id: int) -> Product:
        product = self.get_any(product_id)
        if product.vendorID != vendor.vendorID:
            raise Forbidden("You do not own this product")
        return product

    def _get_owned_variant(self, vendor: Vendor, product_id: int, variant_id: int) -> ProductVariant:
        product = self._get_owned(vendor, product_id)
        for variant in product.variants:
            if variant.variantID == variant_id:
                return variant
        raise NotFound("Variant not found")

    def _apply_changes(self, product: Product, data: Dict[str, Any]) -> None:
        if "title" in data:
            title = parse_text(data["title"], "title")
            if not title:
                raise BadRequest("title cannot be empty")
            product.title = title
        if data.get("slug"):
            slug = slugify(parse_text(data["slug"], "slug"))
            if slug != product.slug:
                self._ensure_slug_available(slug)
                product.slug = slug
        if "description" in data:
            product.description = data["description"]
        if "base_price" in data:
            product.base_price = parse_money(data["base_price"], "base_price")
        if "currency" in data and data["currency"]:
            product.currency = data["currency"].upper()
        if "sku" in data:
            product.sku = data["sku"]
        if "stock" in data:
            product.stock = parse_int(data["stock"], "stock", minimum=0)
        if "status" in data:
            product.status = parse_enum(ProductStatus, data["status"], "status")
        if "category_id" in data:
            product.category = (
                None if data["category_id"] is None else self._get_active_category(data["category_id"])
            )
        if "images" in data:
            product.images = self._build_images(data["images"] or [])

    def _get_active_category(self, category_id: Any) -> Category:
        category = self.db.get(Category, parse_int(category_id, "category_id"))
        if category is None or not category.is_active:
            raise NotFound("Category not found")
        return category

    def _build_variant(self, data: Dict[str, Any]) -> ProductVariant:
        if not isinstance(data, dict):
            raise BadRequest("variants must be objects")
        name = parse_text(data.get("name"), "name")
        if not name:
            raise BadRequest("variant name is required")
        price = data.get("price")
        return ProductVariant(
            name=name,
            sku=data.get("sku"),
            price=None if price is None else parse_money(price, "price"),
            stock=parse_int(data.get("stock", 0), "stock", minimum=0),
            attributes=self._validate_attributes(data.get("attributes")),
        )

    @staticmethod
    def _validate_attributes(attributes: Any) -> Optional[Dict[str, Any]]:
        if attributes is None:
            return None
        if not isinstance(attributes, dict):
            raise BadRequest("attributes must be an object")
        return attributes

    @staticmethod
    def _build_images(images: Iterable[Any]) -> List[ProductImage]:
        built: List[ProductImage] = []
        for index, image in enumerate(images):
            if isinstance(image, str):
                image = {"url": image}
            if not isinstance(image, dict) or not image.get("url"):
                raise BadRequest("each image needs a url")
            built.append(
                ProductImage(
                    url=image["url"],
                    alt_text=image.get("alt_text"),
                    position=parse_int(image.get("position", index), "position", minimum=0),
                )
            )
        return built

    def _ensure_slug_available(self, slug: str) -> None:
        if not slug:
            raise BadRequest("slug must contain letters or digits")
        if self.db.query(Product).filter_by(slug=slug).first() is not None:
            raise Conflict("Product slug already exists")
