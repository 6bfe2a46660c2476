from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from config import DB_URL, STORE_TIMEOUT_SECONDS

connect_args = {}
if DB_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False, "timeout": STORE_TIMEOUT_SECONDS}

engine = create_engine(DB_URL, connect_args=connect_args)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
Base = declarative_base()
