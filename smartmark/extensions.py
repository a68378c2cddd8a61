from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

from smartmark.services.feed import ChangeFeed
from smartmark.services.views import LiveViewRegistry


db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
login_manager.login_view = "auth.login"
login_manager.login_message_category = "error"

change_feed = ChangeFeed()
live_views = LiveViewRegistry()
