from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from kpi_portal.core.config import settings

# SQLite for development/testing, PostgreSQL or MySQL via DATABASE_URL
DATABASE_URL = settings.database_url

if DATABASE_URL.startswith("sqlite") and ":memory:" in DATABASE_URL:
    # One shared connection, so every session sees the same in-memory database
    engine = create_engine(
        DATABASE_URL, connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
elif DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        DATABASE_URL, connect_args={"check_same_thread": False}
    )
else:
    engine = create_engine(DATABASE_URL, pool_pre_ping=True)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """
    Session Provider: Provides a database session per request.
    Transaction management is handled explicitly in the Service Layer.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """
    Registers all domain models and initializes the database schema.
    This should be called during the application startup lifespan.
    """
    import kpi_portal.models  # noqa: F401  (registers every mapper on Base.metadata)
    Base.metadata.create_all(bind=engine)
