from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from gatekeeper.core.config import get_settings

settings = get_settings()

engine = create_engine(settings.database_url, pool_pre_ping=True)

# Outcomes are read after commit; keep loaded attributes instead of re-selecting
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
