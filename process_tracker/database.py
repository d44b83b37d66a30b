from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from process_tracker.config import DATABASE_URL, SQL_ECHO
from process_tracker.db_models import Base

# SQLAlchemy setup
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, echo=SQL_ECHO, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db():
    """Creates any missing tables. Migrations under alembic/ are the source of truth in production."""
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
