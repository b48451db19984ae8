"""SQLAlchemy ``select()`` construction for Spiel lookups and searches."""
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, Date, DateTime, Enum, Integer, Numeric, Text, func, select, type_coerce
from sqlalchemy.orm import contains_eager, selectinload

from database import Name, SimpleArray, Spiel, SpielArt

from ..services.pageable import DEFAULT_PAGE_NUMBER, DEFAULT_PAGE_SIZE, Pageable

# Search flag -> keyword that must occur in ``schlagwoerter``
KEYWORD_FLAGS = {
    'javascript': 'JAVASCRIPT',
    'typescript': 'TYPESCRIPT',
    'java': 'JAVA',
    'python': 'PYTHON',
}

SPECIAL_KEYS = ('name', 'rating', 'preis') + tuple(KEYWORD_FLAGS)

# Range of a 64 bit INTEGER column
MIN_INTEGER = -2 ** 63
MAX_INTEGER = 2 ** 63 - 1


def _is_true(value) -> bool:
    return value is True or value == 'true'


def _to_integer(value) -> int:
    number = int(value)
    if not MIN_INTEGER <= number <= MAX_INTEGER:
        raise ValueError(f"integer out of range: {value!r}")
    return number


def coerce_value(column, value) -> Any:
    """Convert a raw criterion *value* to the Python type of *column*.

    Raises:
        ValueError: The value cannot be represented in the column's type.
    """
    col_type = column.type
    if isinstance(col_type, SimpleArray):
        if isinstance(value, (list, tuple)):
            return ','.join(str(v) for v in value)
        return str(value)
    if value is None:
        return None
    if isinstance(col_type, Boolean):
        if isinstance(value, bool):
            return value
        lowered = str(value).lower()
        if lowered in ('true', '1'):
            return True
        if lowered in ('false', '0'):
            return False
        raise ValueError(f"not a boolean: {value!r}")
    if isinstance(col_type, Integer):
        if isinstance(value, bool):
            raise ValueError(f"not an integer: {value!r}")
        return _to_integer(value)
    if isinstance(col_type, Numeric):
        try:
            return Decimal(str(value))
        except InvalidOperation as e:
            raise ValueError(f"not a number: {value!r}") from e
    if isinstance(col_type, Enum):
        return SpielArt(value)
    if isinstance(col_type, DateTime):
        return value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    if isinstance(col_type, Date):
        return value if isinstance(value, date) else date.fromisoformat(str(value))
    return str(value)


class QueryBuilder:
    """Builds the statements used by :class:`~spiel.services.read_service.ReadService`.

    Every statement inner-joins the Name row and loads it eagerly, so a
    Spiel without a Name is never returned.
    """

    def __init__(self) -> None:
        self._log = logging.getLogger('spielapi.query_builder')

    def build_id(self, spiel_id: int, mit_bilder: bool = False):
        """Statement selecting the Spiel with *spiel_id*.

        Args:
            spiel_id:   Primary key.
            mit_bilder: Also load the Bild rows.
        """
        stmt = (
            select(Spiel)
            .join(Spiel.name)
            .options(contains_eager(Spiel.name))
            .where(Spiel.id == spiel_id)
        )
        if mit_bilder:
            stmt = stmt.options(selectinload(Spiel.bilder))
        return stmt

    def build(self, suchkriterien: Optional[Dict[str, Any]], pageable: Optional[Pageable] = None):
        """Statement for a search over all Spiel rows.

        ``name`` matches a case-insensitive substring, ``rating`` is a minimum,
        ``preis`` a maximum and the keyword flags test ``schlagwoerter``. Any
        other key is compared for equality with the Spiel column of the same
        name. All predicates are combined with AND.

        Raises:
            ValueError: A value cannot be converted to its column's type.
        """
        criteria = dict(suchkriterien or {})
        self._log.debug("build: suchkriterien=%s, pageable=%s", criteria, pageable)

        stmt = (
            select(Spiel)
            .join(Spiel.name)
            .options(contains_eager(Spiel.name))
        )
        keywords = type_coerce(Spiel.schlagwoerter, Text)

        name = criteria.pop('name', None)
        if isinstance(name, str):
            stmt = stmt.where(Name.name.ilike(f'%{name}%'))

        rating = criteria.pop('rating', None)
        if rating is not None:
            try:
                stmt = stmt.where(Spiel.rating >= _to_integer(rating))
            except (TypeError, ValueError):
                self._log.debug("build: ignoring rating=%r", rating)

        preis = criteria.pop('preis', None)
        if preis is not None:
            try:
                stmt = stmt.where(Spiel.preis <= Decimal(str(preis)))
            except InvalidOperation:
                self._log.debug("build: ignoring preis=%r", preis)

        for flag, keyword in KEYWORD_FLAGS.items():
            if not _is_true(criteria.pop(flag, None)):
                continue
            if flag == 'java':
                # JAVASCRIPT alone must not count as JAVA
                stmt = stmt.where(func.replace(keywords, 'JAVASCRIPT', '').like('%JAVA%'))
            else:
                stmt = stmt.where(keywords.like(f'%{keyword}%'))

        columns = Spiel.__table__.columns
        for key, value in criteria.items():
            column = columns[key]
            coerced = coerce_value(column, value)
            if isinstance(column.type, SimpleArray):
                stmt = stmt.where(keywords == coerced)
            else:
                stmt = stmt.where(getattr(Spiel, key) == coerced)

        stmt = stmt.order_by(Spiel.id)

        if pageable is not None and pageable.size == 0:
            return stmt
        size = pageable.size if pageable is not None else DEFAULT_PAGE_SIZE
        number = pageable.number if pageable is not None else DEFAULT_PAGE_NUMBER
        self._log.debug("build: limit=%d, offset=%d", size, number * size)
        return stmt.limit(size).offset(number * size)

    def build_count(self, stmt):
        """Count statement for *stmt* without its ordering and paging."""
        inner = stmt.limit(None).offset(None).order_by(None)
        return select(func.count()).select_from(inner.subquery())
