from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./exhibits.db")
# Database-side bound matching the store's query timeout.
STATEMENT_TIMEOUT_SECONDS = float(os.getenv("EXHIBITS_QUERY_TIMEOUT", "10"))


def build_engine(url: str = DATABASE_URL):
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": STATEMENT_TIMEOUT_SECONDS}
    elif url.startswith("postgresql"):
        connect_args = {"options": f"-c statement_timeout={int(STATEMENT_TIMEOUT_SECONDS * 1000)}"}
    else:
        connect_args = {}
    return create_engine(url, connect_args=connect_args)


def build_session_factory(bind) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = build_engine()
SessionLocal = build_session_factory(engine)

Base = declarative_base()
