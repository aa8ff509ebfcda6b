from __future__ import annotations
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./assessor.db"

Base = declarative_base()


def build_engine(url: str = DATABASE_URL) -> Engine:
	connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
	# In-memory SQLite must share one connection across threads or every session sees an empty db
	if url in ("sqlite://", "sqlite:///:memory:"):
		return create_engine(url, connect_args=connect_args, poolclass=StaticPool, future=True)
	return create_engine(url, connect_args=connect_args, future=True)


def build_session_factory(engine: Engine) -> sessionmaker:
	return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


def create_schema(engine: Engine) -> None:
	# Import registers the tables on Base.metadata
	from . import models  # noqa: F401
	Base.metadata.create_all(bind=engine)
