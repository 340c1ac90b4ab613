"""Flask extensions: one shared instance of each, bound in ``create_app``."""

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFProtect

db = SQLAlchemy()
csrf = CSRFProtect()
# Only login/registration carry explicit limits; no global default.
limiter = Limiter(get_remote_address, storage_uri="memory://")
