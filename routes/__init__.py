from .health import health_bp
from .auth import auth_bp
from .bookings import bookings_bp
from .payouts import payouts_bp
from .notifications import notifications_bp
from .admin import admin_bp
from .stripe_webhook import webhook_bp
