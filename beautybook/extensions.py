"""Flask extension instances, bound to the app in ``create_app``."""
from __future__ import annotations

from flask_cors import CORS
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
cors = CORS()
