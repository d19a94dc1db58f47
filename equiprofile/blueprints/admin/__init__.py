from flask import Blueprint
from flask_login import current_user

from equiprofile.security.access import enforce_admin_unlocked

bp = Blueprint("admin", __name__)


@bp.before_request
def _require_unlocked_admin():
    # Role alone is not enough: every admin route needs a live unlock session
    enforce_admin_unlocked(current_user._get_current_object())


# Import routes so they register on the same bp
from . import routes  # noqa: E402,F401
