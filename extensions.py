# extensions.py

from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_bcrypt import Bcrypt
from flask_mail import Mail

# Single source of truth for the db object.
# Initialized here, bound to the Flask app in create_app().
db = SQLAlchemy()

# Authentication extensions
login_manager = LoginManager()
bcrypt = Bcrypt()

# Outbound invitation email
mail = Mail()
