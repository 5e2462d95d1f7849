from .auth_service import AuthService
from .user_service import UserService
from .vendor_service import VendorService
from .category_service import CategoryService
from .product_service import ProductService
from .inventory_service import InventoryService
from .cart_service import CartService
from .checkout_service import CheckoutService
from .order_service import OrderService
from .payment_service import PaymentGateway, PaymentService
from .payout_service import PayoutService
from .review_service import ReviewService
from .wishlist_service import WishlistService
from .content_service import ContentService
from .admin_service import AdminService
from .notification_service import NotificationService

__all__ = [
    "AuthService",
    "UserService",
    "VendorService",
    "CategoryService",
    "ProductService",
    "InventoryService",
    "CartService",
    "CheckoutService",
    "OrderService",
    "PaymentGateway",
    "PaymentService",
    "PayoutService",
    "ReviewService",
    "WishlistService",
    "ContentService",
    "AdminService",
    "NotificationService",
]
