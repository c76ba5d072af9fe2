from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from horizons.config import settings


class Base(DeclarativeBase):
    pass


engine = create_engine(settings.database_url, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def init_db() -> None:
    import horizons.models  # noqa: F401  registers tables on Base.metadata

    Base.metadata.create_all(bind=engine)
