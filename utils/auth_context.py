from dataclasses import dataclass
from functools import wraps
from flask import g, jsonify
from security.session import get_session_from_request
from models import db
from models.user import User


@dataclass(frozen=True)
class Actor:
    """The authenticated caller, handed explicitly to service operations."""

    user_id: int
    roles: frozenset = frozenset()

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(user_id=user.id, roles=frozenset(r.name for r in user.roles))

    @property
    def is_admin(self) -> bool:
        return "ADMIN" in self.roles


def load_current_user():
    sess = get_session_from_request()
    if not sess:
        g.user = None
        g.session = None
        return
    g.session = sess
    g.user = db.session.get(User, sess.user_id)

def current_actor() -> Actor:
    return Actor.from_user(g.user)

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper
