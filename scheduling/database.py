from contextlib import contextmanager
from sqlalchemy import create_engine, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker, scoped_session
from config.config import Config
from scheduling.models.base import Base

# Create database engine
engine = create_engine(
    Config.DATABASE_URL,
    # A generous busy timeout lets SQLite writers queue behind the member lock
    connect_args={'check_same_thread': False, 'timeout': 30} if 'sqlite' in Config.DATABASE_URL else {}
)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

# Create scoped session for thread safety
db_session = scoped_session(SessionLocal)


def init_db():
    """Initialize database, create all tables"""
    import scheduling.models  # noqa: F401  Import all models
    Base.metadata.create_all(bind=engine)


def drop_db():
    """Drop all tables"""
    Base.metadata.drop_all(bind=engine)


@contextmanager
def get_db():
    """Provide a transactional scope for database operations"""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


class DatabaseManager:
    """Database manager for CRUD operations"""

    def __init__(self, model_class):
        self.model_class = model_class

    def create(self, **kwargs):
        """Create a new record"""
        with get_db() as db:
            instance = self.model_class(**kwargs)
            db.add(instance)
            db.flush()
            db.refresh(instance)
            return instance

    def get(self, id):
        """Get record by ID"""
        with get_db() as db:
            return db.query(self.model_class).filter(self.model_class.id == id).first()

    def get_by(self, **kwargs):
        """Get record by field values"""
        with get_db() as db:
            return db.query(self.model_class).filter_by(**kwargs).first()

    def filter(self, **kwargs):
        """Filter records by field values"""
        with get_db() as db:
            return db.query(self.model_class).filter_by(**kwargs).all()

    def update(self, id, **kwargs):
        """Update a record"""
        with get_db() as db:
            instance = db.query(self.model_class).filter(self.model_class.id == id).first()
            if instance:
                for key, value in kwargs.items():
                    setattr(instance, key, value)
                db.flush()
                db.refresh(instance)
            return instance

    def delete(self, id):
        """Delete a record"""
        with get_db() as db:
            instance = db.query(self.model_class).filter(self.model_class.id == id).first()
            if instance:
                db.delete(instance)
                return True
            return False

    def count(self, **kwargs):
        """Count records"""
        with get_db() as db:
            return db.query(self.model_class).filter_by(**kwargs).count()

    def exists(self, **kwargs):
        """Check if record exists"""
        return self.count(**kwargs) > 0


SERIALIZATION_FAILURE_CODES = ('40001', '40P01')


def lock_member(db, member_id):
    """Take the per-member write lock for the rest of the transaction.

    Must be the first statement of a booking mutation so the overlap
    re-check and the write that follows run one member at a time.
    """
    from scheduling.models import Member
    result = db.execute(
        update(Member)
        .where(Member.id == member_id)
        .values(booking_lock_version=Member.booking_lock_version + 1)
    )
    return result.rowcount == 1


def is_storage_conflict(error) -> bool:
    """True for commit-time failures caused by a competing writer"""
    if isinstance(error, IntegrityError):
        return True
    if isinstance(error, OperationalError):
        code = getattr(error.orig, 'pgcode', None)
        return code in SERIALIZATION_FAILURE_CODES or 'database is locked' in str(error.orig)
    return False
