"""
sitemaster/extensions.py

Unbound extension instances, attached to the app in create_app().

Models, repositories and the seed module import `db` from here so none of them
needs the application object at import time.
"""

from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# `flask db init/migrate/upgrade` for schema changes outside the test suite
migrate = Migrate()
