from fastapi import Request
from sqlalchemy.engine import Engine

from pos_pairing.database.base import Base


def get_db(request: Request):
    """Provides a synchronous database session."""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def init_db(engine: Engine):
    """Create all tables (for quick dev bootstrap, prefer Alembic in prod)."""
    import pos_pairing.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
