"""Blueprint registration."""

from routes.articles import articles_bp
from routes.auth import auth_bp
from routes.bank_accounts import bank_accounts_bp
from routes.businesses import businesses_bp
from routes.invoices import invoices_bp
from routes.reference import reference_bp
from routes.tenant import tenant_bp
from routes.users import users_bp

ALL_BLUEPRINTS = [
    auth_bp,
    tenant_bp,
    users_bp,
    businesses_bp,
    bank_accounts_bp,
    articles_bp,
    reference_bp,
    invoices_bp,
]


def register_blueprints(app):
    """Register all application blueprints on *app*."""
    for bp in ALL_BLUEPRINTS:
        app.register_blueprint(bp)
