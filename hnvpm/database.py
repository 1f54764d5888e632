"""Database engine, session factory and declarative base."""
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from hnvpm.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

connect_args = {"check_same_thread": False} if settings.is_sqlite else {}
engine = create_engine(settings.DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def import_models():
    """Import every model module so Base.metadata knows about all tables."""
    from hnvpm.auth import models as _auth  # noqa: F401
    from hnvpm.modules.organizations import models as _org  # noqa: F401
    from hnvpm.modules.subscriptions import models as _sub  # noqa: F401
    from hnvpm.modules.properties import models as _prop  # noqa: F401
    from hnvpm.modules.tenants import models as _ten  # noqa: F401
    from hnvpm.modules.payments import models as _pay  # noqa: F401
    from hnvpm.modules.maintenance import models as _mnt  # noqa: F401
    from hnvpm.modules.expenses import models as _exp  # noqa: F401
    from hnvpm.modules.system import models as _sys  # noqa: F401


def init_db(bind=None):
    import_models()
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database schema ready")
