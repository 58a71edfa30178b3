"""Database configuration and initialization."""
from sqlalchemy import create_engine, event, BigInteger, Integer
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Create SQLAlchemy base
Base = declarative_base()

# BIGINT primary keys do not autoincrement on SQLite (only INTEGER PRIMARY KEY does)
BigIntPK = BigInteger().with_variant(Integer, 'sqlite')

# Global session and engine
engine = None
db_session = None


def _is_memory_sqlite(database_uri: str) -> bool:
    return database_uri in ('sqlite://', 'sqlite:///:memory:') or 'mode=memory' in database_uri


def _engine_options(database_uri: str, echo: bool) -> dict:
    """Pool options per backend."""
    if database_uri.startswith('sqlite'):
        if _is_memory_sqlite(database_uri):
            # In-memory SQLite must share a single connection across the scoped session
            return {
                'echo': echo,
                'poolclass': StaticPool,
                'connect_args': {'check_same_thread': False},
            }
        return {
            'echo': echo,
            'connect_args': {'check_same_thread': False, 'timeout': 30},
        }
    return {
        'echo': echo,
        'pool_pre_ping': True,  # Enable connection health checks
        'pool_size': 10,
        'max_overflow': 20,
    }


def _serialize_sqlite_writers(sqlite_engine):
    """
    SQLite has no row locks and pysqlite only opens a transaction before the
    first write, so two postings could read the same last balance. Every
    transaction takes the database write lock up front instead.
    """
    @event.listens_for(sqlite_engine, 'connect')
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, 'begin')
    def _begin_immediate(conn):
        conn.exec_driver_sql('BEGIN IMMEDIATE')


def make_engine(database_uri: str, echo: bool = False):
    """Create the engine for a database URI with the backend's pool options."""
    new_engine = create_engine(database_uri, **_engine_options(database_uri, echo))
    if database_uri.startswith('sqlite') and not _is_memory_sqlite(database_uri):
        _serialize_sqlite_writers(new_engine)
    return new_engine


def init_db(app):
    """Initialize database connection."""
    global engine, db_session

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine = make_engine(database_uri, app.config.get('SQLALCHEMY_ECHO', False))

    db_session = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, bind=engine)
    )

    Base.query = db_session.query_property()

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_all():
    """Create every table registered on Base (used by `flask init-db` and tests)."""
    # Import models so they are registered on the metadata
    import backoffice.models  # noqa: F401
    Base.metadata.create_all(engine)


def get_session():
    """Get database session."""
    return db_session
