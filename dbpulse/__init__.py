"""
DB Pulse - Query performance analytics core for database monitoring dashboards
"""

from dbpulse.core.constants import APP_NAME, APP_VERSION

__app_name__ = APP_NAME
__version__ = APP_VERSION
