# Overview: Flask extension instances for the database session and migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# Services never import this object; they receive ``db.session`` explicitly
# from routes, CLI commands and tests.
db = SQLAlchemy()
migrate = Migrate()
