#!/usr/bin/env python3
"""
Database models and configuration for the Spiel catalog.
Handles PostgreSQL (production) and SQLite (development/tests) connections
for Spiel entities with their names, images and file attachments.
"""

import enum
import logging
import os
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List

from sqlalchemy import (
    Boolean, CheckConstraint, Column, Date, DateTime, Enum, ForeignKey, Integer,
    LargeBinary, Numeric, String, Text, create_engine, event, text,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

logger = logging.getLogger('spielapi.database')

# Database URL - adjust for your PostgreSQL setup
DATABASE_URL = os.getenv(
    'DATABASE_URL',
    'postgresql://spiel:p@localhost:5432/spiel'
)

RESOURCES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'spiel', 'resources')

MAX_RATING = 5

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SpielArt(str, enum.Enum):
    """Category of a Spiel, stored as the ``spielart`` enum type."""
    BRETTSPIEL = 'BRETTSPIEL'
    COMPUTERSPIEL = 'COMPUTERSPIEL'
    ACTIONSPIEL = 'ACTIONSPIEL'


class SimpleArray(TypeDecorator):
    """List of strings persisted as a comma delimited text column.

    ``NULL`` and the empty string read back as ``[]``.
    """
    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            return value
        return ','.join(value)

    def process_result_value(self, value, dialect):
        if not value:
            return []
        return value.split(',')


class Spiel(Base):
    """A game in the catalog."""
    __tablename__ = "spiel"

    id = Column(Integer, primary_key=True)
    version = Column(Integer, nullable=False, default=0)
    barcode = Column(String(17), nullable=False, unique=True, index=True)
    rating = Column(Integer, CheckConstraint(f'rating >= 0 AND rating <= {MAX_RATING}'), nullable=False)
    art = Column(Enum(SpielArt, name='spielart'), nullable=True)
    preis = Column(Numeric(8, 2), nullable=False)
    rabatt = Column(Numeric(4, 3), nullable=False, default=Decimal('0'))
    lieferbar = Column(Boolean, nullable=False, default=False)
    datum = Column(Date, nullable=True)
    homepage = Column(String(255), nullable=True)
    schlagwoerter = Column(SimpleArray, nullable=True)
    erzeugt = Column(DateTime, nullable=False, default=_utcnow)
    aktualisiert = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    # Relationships
    name = relationship("Name", back_populates="spiel", uselist=False, cascade="all, delete-orphan")
    bilder = relationship("Bild", back_populates="spiel", cascade="all, delete-orphan")
    file = relationship("SpielFile", back_populates="spiel", uselist=False, cascade="all, delete-orphan")

    # Optimistic locking: INSERT writes 0, every UPDATE writes version + 1
    # and only matches the row when the stored version is unchanged.
    __mapper_args__ = {
        'version_id_col': version,
        'version_id_generator': lambda current: 0 if current is None else current + 1,
    }

    def to_dict(self, with_bilder: bool = False) -> Dict:
        """JSON-serialisable representation (decimals as numbers, ISO dates)."""
        data = {
            'id': self.id,
            'version': self.version,
            'barcode': self.barcode,
            'rating': self.rating,
            'art': self.art.value if self.art else None,
            'preis': float(self.preis) if self.preis is not None else None,
            'rabatt': float(self.rabatt) if self.rabatt is not None else None,
            'lieferbar': self.lieferbar,
            'datum': self.datum.isoformat() if self.datum else None,
            'homepage': self.homepage,
            'schlagwoerter': self.schlagwoerter or [],
            'name': self.name.to_dict() if self.name else None,
            'erzeugt': self.erzeugt.isoformat() if self.erzeugt else None,
            'aktualisiert': self.aktualisiert.isoformat() if self.aktualisiert else None,
        }
        if with_bilder:
            data['bilder'] = [b.to_dict() for b in self.bilder]
        return data

    def __repr__(self) -> str:
        return f"<Spiel id={self.id} version={self.version} barcode={self.barcode!r}>"


class Name(Base):
    """Display name of a Spiel (one-to-one)."""
    __tablename__ = "name"

    id = Column(Integer, primary_key=True)
    name = Column(String(40), nullable=False)
    untertitel = Column(String(40), nullable=True)
    spiel_id = Column(Integer, ForeignKey("spiel.id"), nullable=False, unique=True)

    spiel = relationship("Spiel", back_populates="name")

    def to_dict(self) -> Dict:
        return {'name': self.name, 'untertitel': self.untertitel}


class Bild(Base):
    """Image caption and content type belonging to a Spiel."""
    __tablename__ = "bild"

    id = Column(Integer, primary_key=True)
    beschriftung = Column(String(32), nullable=False)
    content_type = Column(String(16), nullable=False)
    spiel_id = Column(Integer, ForeignKey("spiel.id"), nullable=False, index=True)

    spiel = relationship("Spiel", back_populates="bilder")

    def to_dict(self) -> Dict:
        return {'beschriftung': self.beschriftung, 'contentType': self.content_type}


class SpielFile(Base):
    """Binary attachment of a Spiel (at most one per Spiel)."""
    __tablename__ = "spiel_file"

    id = Column(Integer, primary_key=True)
    data = Column(LargeBinary, nullable=False)
    filename = Column(String(255), nullable=False)
    mimetype = Column(String(255), nullable=True)
    spiel_id = Column(Integer, ForeignKey("spiel.id"), nullable=False, index=True)

    spiel = relationship("Spiel", back_populates="file")


# ---------------------------------------------------------------------------
# Engine / session
# ---------------------------------------------------------------------------

def _sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    # LIKE on the keyword column must be case-sensitive as on PostgreSQL
    cursor.execute("PRAGMA case_sensitive_like=ON")
    cursor.close()


def make_engine(url: str):
    """Create an engine for *url*.

    SQLite connections may be shared across threads; an in-memory database
    keeps a single connection so every session sees the same data.
    """
    if url.startswith('sqlite'):
        kwargs = {'connect_args': {'check_same_thread': False}}
        if url in ('sqlite://', 'sqlite:///:memory:'):
            kwargs['poolclass'] = StaticPool
        eng = create_engine(url, echo=False, **kwargs)
        event.listen(eng, 'connect', _sqlite_pragmas)
        return eng
    return create_engine(url, echo=False, pool_pre_ping=True)


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autoflush=False, bind=engine)


def configure(url: str) -> None:
    """Rebind the module-level engine and session factory to *url*."""
    global engine, DATABASE_URL
    if url == DATABASE_URL:
        return
    engine.dispose()
    DATABASE_URL = url
    engine = make_engine(url)
    SessionLocal.configure(bind=engine)
    logger.info("Database engine configured for dialect %s", engine.dialect.name)


def get_db():
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Initialize database tables."""
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables initialized successfully")


def ping() -> bool:
    """Return True when the database answers ``SELECT 1``."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return True


# ---------------------------------------------------------------------------
# Development data
# ---------------------------------------------------------------------------

def _sql_statements(script: str) -> List[str]:
    """Split an SQL script into statements, dropping ``--`` comments."""
    lines = [re.sub(r'--.*$', '', line) for line in script.splitlines()]
    cleaned = '\n'.join(lines)
    return [stmt.strip() for stmt in cleaned.split(';') if stmt.strip()]


def _read_script(dialect: str, name: str) -> str:
    path = os.path.join(RESOURCES_DIR, dialect, name)
    with open(path, 'r', encoding='utf-8') as fh:
        return fh.read()


def populate(eng=None) -> int:
    """Recreate the tables from the dialect specific DDL script and load the
    sample data.

    Args:
        eng: Engine to use, defaults to the module-level engine.

    Returns:
        Number of executed statements.
    """
    eng = eng or engine
    dialect = 'postgres' if eng.dialect.name == 'postgresql' else eng.dialect.name
    if dialect not in ('postgres', 'sqlite'):
        raise ValueError(f"No DDL scripts for dialect {eng.dialect.name}")

    statements = _sql_statements(_read_script(dialect, 'create.sql'))
    statements += _sql_statements(_read_script(dialect, 'insert.sql'))

    with eng.begin() as conn:
        Base.metadata.drop_all(bind=conn)
        if dialect == 'postgres':
            conn.exec_driver_sql("DROP TYPE IF EXISTS spielart")
        for stmt in statements:
            conn.exec_driver_sql(stmt)
    logger.info("Database populated with %d statements (%s)", len(statements), dialect)
    return len(statements)
