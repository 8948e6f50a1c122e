from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from inbox_ledger.core.config import settings

# -----------------------------------------------------
# Database Engine + Session
# -----------------------------------------------------

DATABASE_URL = settings.DATABASE_URL

# Orchestrator workers share the engine across threads
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL,
    echo=settings.SQL_ECHO,
    connect_args=connect_args,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# -----------------------------------------------------
# Base Model
# -----------------------------------------------------
class Base(DeclarativeBase):
    pass
