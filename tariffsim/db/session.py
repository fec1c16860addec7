from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from tariffsim.db.config import DATABASE_URL

engine = create_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine)
