from .db import db
from .user import User, Role, user_roles
from .audit_log import AuditLog
from .session import Session
from .service_offering import ServiceOffering
from .booking import Booking
from .provider_payout import ProviderPayout
from .notification import Notification
from .reconciliation_alert import ReconciliationAlert
