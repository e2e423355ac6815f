from app.core.config import settings, Settings
from app.core.database import get_db, Base, Database

__all__ = ["settings", "Settings", "get_db", "Base", "Database"]
