from datetime import datetime
from models.db import db

class ServiceOffering(db.Model):
    __tablename__ = "service_offerings"

    id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    title = db.Column(db.String(160), nullable=False)
    base_price = db.Column(db.Integer, nullable=False, default=0)  # minor units
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
