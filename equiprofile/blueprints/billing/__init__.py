from flask import Blueprint

bp = Blueprint("billing", __name__)

# Import routes so they register on the bp
from . import routes  # noqa: E402,F401
