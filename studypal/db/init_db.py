from studypal.db.session import engine
from studypal.db.base import Base
import studypal.db.models  # noqa: F401  registers all tables


def init_db():
    """Create any missing tables (used when migrations are not run)."""
    Base.metadata.create_all(bind=engine)
