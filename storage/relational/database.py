"""
Database setup and connection management for the portal.

This module handles:
- SQLAlchemy engine creation
- Request-scoped session management
- Connection pooling configuration
- Database initialization (tables + seeded roles)
"""

from sqlalchemy import create_engine, inspect, pool, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError
import os
from typing import Generator, Optional
import logging

import urllib.parse

logger = logging.getLogger(__name__)

import dotenv

dotenv.load_dotenv()


class DatabaseConfig:
    """Configuration for database connections"""

    def __init__(self, url: Optional[str] = None):
        self.connection_string = url or os.getenv("DATABASE_URL")

        if not self.connection_string:
            # Local SQLite file for development
            self.connection_string = os.getenv(
                "PORTAL_DATABASE_URL",
                "sqlite:///./portal.db"
            )

        # Connection pooling
        self.pool_size = int(os.getenv("DB_POOL_SIZE", "10"))
        self.max_overflow = int(os.getenv("DB_MAX_OVERFLOW", "20"))
        self.pool_recycle = int(os.getenv("DB_POOL_RECYCLE", "1500"))

        # Echo SQL for debugging (set False in production)
        self.echo = os.getenv("DB_ECHO", "False").lower() == "true"

        logger.info(f"Database config: pool_size={self.pool_size}, max_overflow={self.max_overflow}")


class DatabaseManager:
    """
    Owns the engine and the session factory for one application instance.

    The engine (a connection pool) lives as long as the app. Sessions are
    never shared: each request gets its own from `session_scope()`.

    Usage:
        db = DatabaseManager(DatabaseConfig())
        db.initialize()
        for session in db.session_scope():
            ...
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self.config = config or DatabaseConfig()
        self._engine = None
        self._SessionLocal = None
        self._db_type = None

    def initialize(self):
        """
        Create engine and session factory, then create tables and seed roles.
        Idempotent.
        """
        if self._engine is not None:
            logger.warning("DatabaseManager already initialized")
            return

        logger.info("Initializing portal database...")
        connection_uri = self._build_connection_uri(self.config.connection_string)
        self._engine = self._create_engine(connection_uri)
        self._SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self._engine,
            expire_on_commit=False
        )

        self.create_tables()
        self.seed_roles()
        logger.info(f"✓ Portal database initialized ({self._db_type})")

    def _create_engine(self, connection_uri: str):
        """Create SQLAlchemy engine with pooling"""
        if connection_uri.startswith("sqlite"):
            self._db_type = "sqlite"
            kwargs = {
                "echo": self.config.echo,
                "connect_args": {"check_same_thread": False},
            }
            # In-memory databases live inside one connection
            if connection_uri in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = pool.StaticPool
            return create_engine(connection_uri, **kwargs)

        self._db_type = "mssql" if connection_uri.startswith("mssql") else "postgresql"
        return create_engine(
            connection_uri,
            poolclass=pool.QueuePool,
            pool_size=self.config.pool_size,
            max_overflow=self.config.max_overflow,
            pool_recycle=self.config.pool_recycle,
            pool_pre_ping=True,
            echo=self.config.echo,
            pool_timeout=30,
        )

    @staticmethod
    def _build_connection_uri(connection_string: str) -> str:
        """
        Build SQLAlchemy connection URI from connection string.
        Supports SQLite, PostgreSQL and Azure SQL (pymssql) connection strings.
        """
        if not connection_string:
            raise ValueError("Connection string is empty")

        lowered = connection_string.lower()
        if lowered.startswith(("sqlite", "postgres", "mssql")):
            return connection_string

        # Azure SQL - parse connection string
        parts = {}
        for part in connection_string.split(';'):
            if '=' in part:
                key, value = part.split('=', 1)
                parts[key.strip()] = value.strip()

        required = ['Server', 'Initial Catalog', 'User ID', 'Password']
        missing = [f for f in required if f not in parts]

        if missing:
            raise ValueError(f"Invalid connection string: missing {missing}")

        server = parts['Server'].replace('tcp:', '').split(',')[0]
        database = parts['Initial Catalog']
        user = parts['User ID']
        password = parts['Password']

        password_encoded = urllib.parse.quote_plus(password)
        return f"mssql+pymssql://{user}:{password_encoded}@{server}:1433/{database}"

    def create_tables(self):
        """Create all tables if they don't exist (IDEMPOTENT)"""
        from auth.models import Base

        if self._engine is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")

        existing_tables = set(inspect(self._engine).get_table_names())
        Base.metadata.create_all(bind=self._engine, checkfirst=True)
        created = set(Base.metadata.tables) - existing_tables
        for table_name in sorted(created):
            logger.info(f"✓ Created table: {table_name}")

    def seed_roles(self):
        """Insert the role rows the hierarchy relies on."""
        from auth.models import RoleRecord
        from auth.roles import Role, ROLE_DESCRIPTIONS

        session = self._SessionLocal()
        try:
            existing = {name for (name,) in session.query(RoleRecord.name).all()}
            for role in Role:
                if role.label not in existing:
                    session.add(RoleRecord(name=role.label, description=ROLE_DESCRIPTIONS[role]))
                    logger.info(f"✓ Seeded role: {role.label}")
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Seeding roles failed: {e}")
            raise
        finally:
            session.close()

    def drop_tables(self):
        """
        Drop all tables. USE WITH CAUTION (for testing only).
        """
        from auth.models import Base

        if self._engine is None:
            raise RuntimeError("Database not initialized")

        logger.warning("DROPPING ALL PORTAL TABLES - THIS IS DESTRUCTIVE")
        Base.metadata.drop_all(bind=self._engine)

    def new_session(self) -> Session:
        if self._SessionLocal is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._SessionLocal()

    def session_scope(self) -> Generator[Session, None, None]:
        """
        Yield one session for the lifetime of a request.

        Commits on success, rolls back on any exception, always closes.
        """
        session = self.new_session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error: {e}")
            raise
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def health_check(self) -> bool:
        """Check if database is healthy"""
        try:
            if self._SessionLocal is None:
                return False

            session = self._SessionLocal()
            try:
                session.execute(text("SELECT 1"))
            finally:
                session.close()
            return True
        except SQLAlchemyError as e:
            logger.error(f"❌ Database health check failed: {e}")
            return False

    def dispose(self):
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._SessionLocal = None

    @property
    def engine(self):
        """Get the SQLAlchemy engine (for migrations, admin tasks)"""
        if self._engine is None:
            raise RuntimeError("Database not initialized")
        return self._engine

    def is_using_sqlite(self) -> bool:
        """Check if currently using SQLite (development)"""
        return self._db_type == "sqlite"
