"""Read access to Spiel entities: lookup by id, file lookup and search."""
import logging
import re
from typing import Any, Dict, Optional

from sqlalchemy import select

from database import Spiel, SpielArt, SpielFile

from ..exceptions import NotFoundException
from ..repositories.query_builder import SPECIAL_KEYS, QueryBuilder
from .pageable import Pageable, Slice

# Generated primary keys
ID_PATTERN = re.compile(r'^[1-9]\d{0,10}$')


class ReadService:
    """Looks up Spiel rows through a :class:`QueryBuilder`.

    All methods accept a *db* SQLAlchemy session as the first argument so
    that callers (Flask route handlers, GraphQL resolvers) control the
    session lifecycle.
    """

    def __init__(self, query_builder: Optional[QueryBuilder] = None) -> None:
        self._qb = query_builder or QueryBuilder()
        self._log = logging.getLogger('spielapi.read_service')

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def find_by_id(self, db, spiel_id: int, mit_bilder: bool = False) -> Spiel:
        """Return the Spiel with *spiel_id* including its Name.

        Args:
            db:         SQLAlchemy session.
            spiel_id:   Primary key.
            mit_bilder: Also load the Bild rows.

        Raises:
            NotFoundException: No Spiel with this id.
        """
        self._log.debug("find_by_id: id=%s, mit_bilder=%s", spiel_id, mit_bilder)
        if not self.is_valid_id(spiel_id):
            raise NotFoundException(f"There is no Spiel with id {spiel_id}.")
        spiel = db.execute(self._qb.build_id(spiel_id, mit_bilder)).scalars().first()
        if spiel is None:
            raise NotFoundException(f"There is no Spiel with id {spiel_id}.")
        self._log.debug("find_by_id: spiel=%r", spiel)
        return spiel

    def find_file_by_spiel_id(self, db, spiel_id: int) -> Optional[SpielFile]:
        """Return the file attached to *spiel_id*, or ``None``."""
        self._log.debug("find_file_by_spiel_id: spiel_id=%s", spiel_id)
        if not self.is_valid_id(spiel_id):
            return None
        return db.execute(
            select(SpielFile).where(SpielFile.spiel_id == spiel_id)
        ).scalars().first()

    def find(self, db, suchkriterien: Optional[Dict[str, Any]], pageable: Pageable) -> Slice:
        """Search Spiel rows.

        Args:
            db:            SQLAlchemy session.
            suchkriterien: Flat criteria map; ``None`` or ``{}`` selects all.
            pageable:      Page to return.

        Raises:
            NotFoundException: Unknown criterion, invalid ``art``, a value
                that does not fit its column, or no match at all.
        """
        self._log.debug("find: suchkriterien=%s, pageable=%s", suchkriterien, pageable)

        if not suchkriterien:
            return self._find_all(db, pageable)

        if not self._check_keys(suchkriterien.keys()):
            raise NotFoundException("Invalid search criteria.")
        art = suchkriterien.get('art')
        if art is not None and not self._check_art(art):
            raise NotFoundException(f"Invalid art: {art}.")

        try:
            stmt = self._qb.build(suchkriterien, pageable)
        except ValueError as e:
            raise NotFoundException(f"Invalid search criteria: {e}.") from e
        spiele = list(db.execute(stmt).scalars().all())
        if not spiele:
            self._log.debug("find: no Spiel found")
            raise NotFoundException(f"No Spiel found for {suchkriterien}.")
        total = db.execute(self._qb.build_count(stmt)).scalar_one()
        return self._create_slice(spiele, total)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find_all(self, db, pageable: Pageable) -> Slice:
        stmt = self._qb.build({}, pageable)
        spiele = list(db.execute(stmt).scalars().all())
        if not spiele:
            raise NotFoundException(f"Invalid page: {pageable.number}.")
        total = db.execute(self._qb.build_count(stmt)).scalar_one()
        return self._create_slice(spiele, total)

    @staticmethod
    def is_valid_id(spiel_id) -> bool:
        """True when *spiel_id* has the shape of a generated primary key."""
        return spiel_id is not None and ID_PATTERN.match(str(spiel_id)) is not None

    def _check_keys(self, keys) -> bool:
        # relationship attributes (name, bilder, file) are not searchable
        columns = Spiel.__table__.columns.keys()
        valid = True
        for key in keys:
            if key not in columns and key not in SPECIAL_KEYS:
                self._log.debug("_check_keys: invalid key %s", key)
                valid = False
        return valid

    def _check_art(self, art) -> bool:
        try:
            SpielArt(art)
        except ValueError:
            self._log.debug("_check_art: invalid art %s", art)
            return False
        return True

    @staticmethod
    def _create_slice(spiele, total: int) -> Slice:
        # NULL keyword columns already load as [] (database.SimpleArray)
        return Slice(content=spiele, total_elements=total)
