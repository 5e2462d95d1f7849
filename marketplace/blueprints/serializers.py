"""JSON shapes for API responses. Keys are snake_case; money is a float."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from marketplace.models import (
    BlogPost,
    Cart,
    CartItem,
    Category,
    Order,
    OrderItem,
    Page,
    Payment,
    Payout,
    Product,
    ProductImage,
    ProductVariant,
    Refund,
    Review,
    User,
    Vendor,
    WishlistItem,
)
from marketplace.services.cart_service import CartService
from marketplace.services.checkout_service import CheckoutSummary


def serialize_dt(value: Optional[datetime]) -> Optional[str]:
    if not value:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def money_to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value if isinstance(value, Decimal) else Decimal(str(value)))


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.userID,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "phone": user.phone,
        "roles": user.roles,
        "status": _enum_value(user.status),
        "created_at": serialize_dt(user.created_at),
        "updated_at": serialize_dt(user.updated_at),
    }


def serialize_vendor_public(vendor: Vendor) -> Dict[str, Any]:
    return {
        "id": vendor.vendorID,
        "name": vendor.name,
        "slug": vendor.slug,
        "logo_url": vendor.logo_url,
        "description": vendor.description,
        "created_at": serialize_dt(vendor.created_at),
    }


def serialize_vendor(vendor: Vendor) -> Dict[str, Any]:
    body = serialize_vendor_public(vendor)
    body.update(
        {
            "owner_id": vendor.ownerID,
            "status": _enum_value(vendor.status),
            "commission_rate": money_to_float(vendor.commission_rate),
            "business_email": vendor.business_email,
            "business_phone": vendor.business_phone,
            "business_address": vendor.business_address,
            "updated_at": serialize_dt(vendor.updated_at),
        }
    )
    return body


def serialize_category(category: Category, with_children: bool = True, active_only: bool = True) -> Dict[str, Any]:
    body = {
        "id": category.categoryID,
        "name": category.name,
        "slug": category.slug,
        "description": category.description,
        "parent_id": category.parentID,
        "position": category.position,
        "is_active": category.is_active,
    }
    if with_children:
        children = sorted(category.children, key=lambda child: (child.position, child.name))
        body["children"] = [
            serialize_category(child, with_children=True, active_only=active_only)
            for child in children
            if child.is_active or not active_only
        ]
    return body


def serialize_category_detail(category: Category) -> Dict[str, Any]:
    body = serialize_category(category)
    parent = category.parent
    body["parent"] = serialize_category(parent, with_children=False) if parent is not None else None
    return body


def serialize_variant(variant: ProductVariant) -> Dict[str, Any]:
    return {
        "id": variant.variantID,
        "product_id": variant.productID,
        "name": variant.name,
        "sku": variant.sku,
        "price": money_to_float(variant.price),
        "effective_price": money_to_float(variant.effective_price),
        "stock": variant.stock,
        "attributes": variant.attributes or {},
    }


def serialize_image(image: ProductImage) -> Dict[str, Any]:
    return {
        "id": image.imageID,
        "url": image.url,
        "alt_text": image.alt_text,
        "position": image.position,
    }


def serialize_product(product: Product, detail: bool = False) -> Dict[str, Any]:
    body = {
        "id": product.productID,
        "vendor_id": product.vendorID,
        "category_id": product.categoryID,
        "title": product.title,
        "slug": product.slug,
        "description": product.description,
        "base_price": money_to_float(product.base_price),
        "currency": product.currency,
        "sku": product.sku,
        "status": _enum_value(product.status),
        "stock": product.stock,
        "average_rating": money_to_float(product.average_rating),
        "review_count": product.review_count,
        "is_featured": product.is_featured,
        "images": [serialize_image(image) for image in product.images],
        "variants": [serialize_variant(variant) for variant in product.variants],
        "created_at": serialize_dt(product.created_at),
        "updated_at": serialize_dt(product.updated_at),
    }
    if detail:
        body["vendor"] = serialize_vendor_public(product.vendor) if product.vendor else None
        body["category"] = (
            serialize_category(product.category, with_children=False) if product.category else None
        )
    return body


def serialize_cart_item(item: CartItem) -> Dict[str, Any]:
    return {
        "id": item.cartItemID,
        "product_id": item.productID,
        "variant_id": item.variantID,
        "vendor_id": item.vendorID,
        "product_title": item.product.title if item.product else None,
        "variant_name": item.variant.name if item.variant else None,
        "quantity": item.quantity,
        "unit_price": money_to_float(item.unit_price),
        "subtotal": money_to_float(item.subtotal),
    }


def _serialize_vendor_group(group: Dict[str, Any]) -> Dict[str, Any]:
    vendor = group["vendor"]
    body = {
        "vendor": {"id": vendor.vendorID, "name": vendor.name, "slug": vendor.slug} if vendor else None,
        "items": [serialize_cart_item(item) for item in group["items"]],
        "subtotal": money_to_float(group["subtotal"]),
    }
    if "shipping" in group:
        body["shipping"] = money_to_float(group["shipping"])
    return body


def serialize_cart(cart: Cart) -> Dict[str, Any]:
    return {
        "id": cart.cartID,
        "items": [serialize_cart_item(item) for item in cart.items],
        "vendor_groups": [
            _serialize_vendor_group(group) for group in CartService.group_by_vendor(cart.items).values()
        ],
        "item_count": sum(item.quantity for item in cart.items),
        "total": money_to_float(cart.total),
        "currency": cart.currency,
    }


def serialize_checkout_summary(summary: CheckoutSummary) -> Dict[str, Any]:
    return {
        "vendor_groups": [_serialize_vendor_group(group) for group in summary.vendor_groups],
        "item_count": sum(item.quantity for item in summary.items),
        "subtotal": money_to_float(summary.subtotal),
        "shipping": money_to_float(summary.shipping),
        "tax": money_to_float(summary.tax),
        "discount": money_to_float(summary.discount),
        "coupon_code": summary.coupon_code,
        "total": money_to_float(summary.total),
        "currency": summary.currency,
    }


def serialize_order_item(item: OrderItem) -> Dict[str, Any]:
    return {
        "id": item.orderItemID,
        "order_id": item.orderID,
        "product_id": item.productID,
        "variant_id": item.variantID,
        "vendor_id": item.vendorID,
        "product_title": item.product_title,
        "variant_name": item.variant_name,
        "quantity": item.quantity,
        "unit_price": money_to_float(item.unit_price),
        "subtotal": money_to_float(item.subtotal),
        "fulfillment_status": _enum_value(item.fulfillment_status),
        "tracking_number": item.tracking_number,
    }


def serialize_order(order: Order, items: Optional[Iterable[OrderItem]] = None) -> Dict[str, Any]:
    """``items`` narrows the line items shown, e.g. to one vendor's share."""
    shown = order.items if items is None else items
    return {
        "id": order.orderID,
        "user_id": order.userID,
        "status": _enum_value(order.status),
        "payment_status": _enum_value(order.payment_status),
        "subtotal": money_to_float(order.subtotal),
        "discount_amount": money_to_float(order.discount_amount),
        "shipping_cost": money_to_float(order.shipping_cost),
        "tax_amount": money_to_float(order.tax_amount),
        "total": money_to_float(order.total),
        "refunded_amount": money_to_float(order.refunded_amount),
        "currency": order.currency,
        "shipping_address": order.shipping_address,
        "billing_address": order.billing_address,
        "notes": order.notes,
        "coupon_code": order.coupon_code,
        "delivered_at": serialize_dt(order.delivered_at),
        "created_at": serialize_dt(order.created_at),
        "updated_at": serialize_dt(order.updated_at),
        "items": [serialize_order_item(item) for item in shown],
    }


def serialize_vendor_order(order: Order, vendor: Vendor) -> Dict[str, Any]:
    return serialize_order(order, [item for item in order.items if item.vendorID == vendor.vendorID])


def serialize_payment(payment: Payment) -> Dict[str, Any]:
    return {
        "id": payment.paymentID,
        "order_id": payment.orderID,
        "provider": payment.provider,
        "session_id": payment.provider_session_id,
        "amount": money_to_float(payment.amount),
        "currency": payment.currency,
        "status": _enum_value(payment.status),
        "created_at": serialize_dt(payment.created_at),
        "updated_at": serialize_dt(payment.updated_at),
    }


def serialize_refund(refund: Refund) -> Dict[str, Any]:
    return {
        "id": refund.refundID,
        "order_id": refund.orderID,
        "payment_id": refund.paymentID,
        "amount": money_to_float(refund.amount),
        "reason": refund.reason,
        "status": _enum_value(refund.status),
        "external_reference": refund.external_reference,
        "failure_reason": refund.failure_reason,
        "created_at": serialize_dt(refund.created_at),
        "processed_at": serialize_dt(refund.processed_at),
    }


def serialize_payout(payout: Payout) -> Dict[str, Any]:
    return {
        "id": payout.payoutID,
        "vendor_id": payout.vendorID,
        "amount": money_to_float(payout.amount),
        "status": _enum_value(payout.status),
        "period_start": serialize_dt(payout.period_start),
        "period_end": serialize_dt(payout.period_end),
        "details": payout.details or {},
        "created_at": serialize_dt(payout.created_at),
        "updated_at": serialize_dt(payout.updated_at),
    }


def serialize_review(review: Review) -> Dict[str, Any]:
    reviewer = review.user
    return {
        "id": review.reviewID,
        "product_id": review.productID,
        "user_id": review.userID,
        "reviewer_name": (reviewer.full_name or reviewer.email.split("@")[0]) if reviewer else None,
        "rating": review.rating,
        "title": review.title,
        "body": review.body,
        "status": _enum_value(review.status),
        "created_at": serialize_dt(review.created_at),
        "updated_at": serialize_dt(review.updated_at),
    }


def serialize_wishlist_item(item: WishlistItem) -> Dict[str, Any]:
    return {
        "id": item.wishlistItemID,
        "product_id": item.productID,
        "added_at": serialize_dt(item.added_at),
        "product": serialize_product(item.product) if item.product else None,
    }


def serialize_page(page: Page) -> Dict[str, Any]:
    return {
        "id": page.pageID,
        "slug": page.slug,
        "title": page.title,
        "content": page.content,
        "status": _enum_value(page.status),
        "meta_title": page.meta_title,
        "meta_description": page.meta_description,
        "published_at": serialize_dt(page.published_at),
        "created_at": serialize_dt(page.created_at),
        "updated_at": serialize_dt(page.updated_at),
    }


def serialize_post(post: BlogPost) -> Dict[str, Any]:
    return {
        "id": post.postID,
        "slug": post.slug,
        "title": post.title,
        "excerpt": post.excerpt,
        "content": post.content,
        "status": _enum_value(post.status),
        "featured_image": post.featured_image,
        "author": post.author,
        "tags": post.tags,
        "published_at": serialize_dt(post.published_at),
        "created_at": serialize_dt(post.created_at),
        "updated_at": serialize_dt(post.updated_at),
    }
