import sys

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from horizons.config import settings
from horizons.logging import get_logger

log = get_logger("db_check")


def main() -> int:
    database_url = settings.database_url
    engine = create_engine(database_url, pool_pre_ping=True)
    log.info("Checking %s", engine.url.render_as_string(hide_password=True))
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            bags = conn.execute(text("SELECT count(*) FROM bag")).scalar_one()
    except SQLAlchemyError as exc:
        log.error("DB connection FAILED: %s", exc)
        return 1
    log.info("DB connection OK (%s bag rows)", bags)
    return 0


if __name__ == "__main__":
    sys.exit(main())
