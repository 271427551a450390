import json
import logging

from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.notification import Notification

logger = logging.getLogger(__name__)


def notify(user_id: int, type_: str, title: str, message: str, data: dict | None = None) -> bool:
    """Fire-and-forget. A failed insert is logged and never reaches the caller."""
    try:
        db.session.add(Notification(
            user_id=user_id,
            type=type_,
            title=title,
            message=message,
            data_json=json.dumps(data, default=str) if data else None,
        ))
        db.session.commit()
        return True
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning("Could not store %s notification for user %s", type_, user_id, exc_info=True)
        return False
