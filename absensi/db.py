from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from absensi.settings import get_settings


class Base(DeclarativeBase):
    pass


engine = create_engine(get_settings().database_url, pool_pre_ping=True, future=True)
# Collaborator reads open one short-lived session each (see services/sql_sources.py).
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
