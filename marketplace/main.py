import logging
import time

from flask import Flask, g, jsonify, request
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import generate_password_hash

from marketplace.config import Config
from marketplace.database import Base, SessionLocal, close_db, engine
from marketplace.errors import register_error_handlers
from marketplace.models import User, UserRole, UserStatus
from marketplace.observability import (
    check_database_health,
    configure_logging,
    ensure_request_id,
    increment_counter,
    observe_latency,
)
from marketplace.security import init_security
from marketplace.blueprints.admin import admin_bp
from marketplace.blueprints.auth import auth_bp
from marketplace.blueprints.cart import cart_bp
from marketplace.blueprints.categories import categories_bp
from marketplace.blueprints.checkout import checkout_bp
from marketplace.blueprints.content import content_bp
from marketplace.blueprints.notifications import notifications_bp
from marketplace.blueprints.orders import orders_bp
from marketplace.blueprints.payments import payments_bp
from marketplace.blueprints.products import products_bp
from marketplace.blueprints.reviews import reviews_bp
from marketplace.blueprints.users import users_bp
from marketplace.blueprints.vendors import vendors_bp
from marketplace.blueprints.wishlist import wishlist_bp

app = Flask(__name__)
Config.configure_app(app)
configure_logging(app)
init_security(app)
register_error_handlers(app)

for blueprint in (
    auth_bp,
    users_bp,
    vendors_bp,
    categories_bp,
    products_bp,
    cart_bp,
    checkout_bp,
    orders_bp,
    payments_bp,
    reviews_bp,
    wishlist_bp,
    content_bp,
    notifications_bp,
    admin_bp,
):
    app.register_blueprint(blueprint)

logger = logging.getLogger(__name__)


def seed_admin(db) -> None:
    """Create (or promote) the configured admin account."""
    if not Config.ADMIN_EMAIL or not Config.ADMIN_PASSWORD:
        return
    email = Config.ADMIN_EMAIL.strip().lower()
    user = db.query(User).filter_by(email=email).first()
    if user is None:
        user = User(
            email=email,
            password_hash=generate_password_hash(Config.ADMIN_PASSWORD),
            first_name="Admin",
            status=UserStatus.ACTIVE,
        )
        user.roles = [UserRole.CUSTOMER, UserRole.ADMIN]
        db.add(user)
        logger.info("Seeded admin account %s", email)
    elif not user.is_admin:
        user.add_role(UserRole.ADMIN)
        logger.info("Granted admin role to %s", email)
    db.commit()


# Initialize database tables
def init_database():
    """Initialize database tables and the seed admin"""
    try:
        Base.metadata.create_all(bind=engine)
        db = SessionLocal()
        try:
            seed_admin(db)
        finally:
            db.close()
        logger.info("Database tables initialized successfully")
    except SQLAlchemyError as e:
        # /health reports the database as DOWN until it becomes reachable.
        logger.exception("Error initializing database: %s", e)


# Initialize database on startup
init_database()


@app.before_request
def before_request_logging():
    g.request_started_at = time.perf_counter()
    g.request_id = ensure_request_id()
    increment_counter(
        "http_requests_total",
        labels={
            "method": request.method,
            "endpoint": request.endpoint or request.path,
        },
    )


@app.after_request
def after_request_logging(response):
    started = getattr(g, 'request_started_at', None)
    if started is not None:
        duration_ms = (time.perf_counter() - started) * 1000
        observe_latency(
            "http_request_latency_ms",
            duration_ms,
            labels={
                "method": request.method,
                "endpoint": request.endpoint or request.path,
                "status": str(response.status_code),
            },
        )
    if response.status_code >= 500:
        increment_counter(
            "http_errors_total",
            labels={
                "method": request.method,
                "endpoint": request.endpoint or request.path,
                "status": str(response.status_code),
            },
        )
        logger.error("Request finished with error status %s", response.status_code)
    else:
        logger.info("Request finished", extra={"status_code": response.status_code})
    request_id = getattr(g, "request_id", None)
    if request_id:
        response.headers[Config.REQUEST_ID_HEADER] = request_id
    return response


@app.teardown_appcontext
def teardown_db(exception):
    close_db(exception)


@app.route('/health', methods=['GET'])
def health():
    db_status = check_database_health()
    overall = "UP" if db_status.get("status") == "UP" else "DEGRADED"
    status_code = 200 if overall == "UP" else 503
    return jsonify({
        "status": overall,
        "components": {
            "database": db_status
        }
    }), status_code
