# extensions.py

from flask_sqlalchemy import SQLAlchemy
from flask_mail import Mail

# This is the single source of truth for the db object.
# It's initialized here, but not yet connected to a Flask app.
db = SQLAlchemy()

# Outbound email for the email campaign channel
mail = Mail()
