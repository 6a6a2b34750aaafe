from .main import main_blueprint
from .costsheets import costsheets_blueprint
from .costsheet_import import costsheet_import_blueprint
from .costsheet_export import costsheet_export_blueprint
from .analytics import analytics_blueprint
from .activity import activity_blueprint
from .admin import admin_blueprint
from .users import users_blueprint
from .integrations import integrations_blueprint
