from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from core.config import database_url

from .base import Base


engine = create_engine(database_url(), pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def init_db() -> None:
    Base.metadata.create_all(bind=engine)
