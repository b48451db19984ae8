"""Write access to Spiel entities: create, attach a file, update and delete."""
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import delete, exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from database import Bild, Name, Spiel, SpielFile

from ..exceptions import (
    BarcodeExistsException,
    NotFoundException,
    VersionInvalidException,
    VersionOutdatedException,
)
from .read_service import ReadService

# ETag / If-Match value, e.g. "0"
VERSION_PATTERN = re.compile(r'^"(\d{1,3})"')


class WriteService:
    """Validates and applies write operations on Spiel rows.

    Rules
    -----
    * ``barcode`` is unique across all Spiel rows.
    * Updates carry the version the client last saw as ``"<n>"``; a version
      lower than the stored one is rejected as outdated.
    * Updates change scalar columns only, never the Name or Bild rows.
    * Deleting an unknown id is not an error.

    All methods accept a *db* SQLAlchemy session as the first argument and
    commit it on success.
    """

    def __init__(self, read_service: ReadService, mail_notifier=None) -> None:
        """
        Args:
            read_service:  Used to load existing Spiel rows.
            mail_notifier: Object with ``send(subject, body)``; ``None``
                disables the notification after a create.
        """
        self._read = read_service
        self._mail = mail_notifier
        self._log = logging.getLogger('spielapi.write_service')

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create(self, db, spiel: Spiel) -> int:
        """Insert *spiel* with its Name and Bild rows.

        Returns:
            The generated id.

        Raises:
            BarcodeExistsException: The barcode is already stored.
        """
        self._log.debug("create: spiel=%r", spiel)
        self._validate_create(db, spiel)

        db.add(spiel)
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            if self._barcode_exists(db, spiel.barcode):
                raise BarcodeExistsException(spiel.barcode) from e
            raise

        self._sendmail(spiel)
        self._log.debug("create: id=%s", spiel.id)
        return spiel.id

    def add_file(self, db, spiel_id: int, data: bytes, filename: str,
                 mimetype: Optional[str]) -> SpielFile:
        """Attach a binary file to the Spiel, replacing any previous one.

        Raises:
            NotFoundException: No Spiel with *spiel_id*.
        """
        self._log.debug("add_file: spiel_id=%s, filename=%s, mimetype=%s",
                        spiel_id, filename, mimetype)
        self._read.find_by_id(db, spiel_id)

        db.execute(delete(SpielFile).where(SpielFile.spiel_id == spiel_id))
        spiel_file = SpielFile(spiel_id=spiel_id, data=data, filename=filename, mimetype=mimetype)
        db.add(spiel_file)
        db.commit()
        return spiel_file

    def update(self, db, spiel_id: Optional[int], spiel: Dict[str, Any], version: str) -> int:
        """Overwrite the scalar columns of a stored Spiel.

        Args:
            db:       SQLAlchemy session.
            spiel_id: Primary key of the Spiel to change.
            spiel:    Column values to merge; columns not in the dict keep
                      their stored value (see ``SpielDtoOhneRef.scalar_fields``).
            version:  Version token as sent in ``If-Match``, e.g. ``'"0"'``.

        Returns:
            The new version.

        Raises:
            NotFoundException:        No Spiel with *spiel_id*.
            VersionInvalidException:  *version* is not ``"<n>"``.
            VersionOutdatedException: *version* is older than the stored
                version or a concurrent update won the race.
        """
        self._log.debug("update: id=%s, spiel=%s, version=%s", spiel_id, spiel, version)
        if spiel_id is None:
            raise NotFoundException(f"There is no Spiel with id {spiel_id}.")

        spiel_db = self._validate_update(db, spiel_id, version)
        for key, value in spiel.items():
            setattr(spiel_db, key, value)
        spiel_db.aktualisiert = datetime.now(timezone.utc).replace(tzinfo=None)

        try:
            db.commit()
        except StaleDataError as e:
            db.rollback()
            self._log.debug("update: concurrent modification of id=%s", spiel_id)
            raise VersionOutdatedException(version) from e
        except IntegrityError as e:
            db.rollback()
            barcode = spiel.get('barcode')
            if barcode is not None and self._barcode_exists(db, barcode):
                raise BarcodeExistsException(barcode) from e
            raise

        self._log.debug("update: new version=%s", spiel_db.version)
        return spiel_db.version

    def delete(self, db, spiel_id: int) -> bool:
        """Delete the Spiel with its file, Name and Bild rows.

        Returns:
            ``True`` if a Spiel row was deleted; ``False`` if none existed.
        """
        self._log.debug("delete: id=%s", spiel_id)
        try:
            self._read.find_by_id(db, spiel_id)
        except NotFoundException:
            return False

        try:
            db.execute(delete(SpielFile).where(SpielFile.spiel_id == spiel_id))
            db.execute(delete(Name).where(Name.spiel_id == spiel_id))
            db.execute(delete(Bild).where(Bild.spiel_id == spiel_id))
            result = db.execute(
                delete(Spiel).where(Spiel.id == spiel_id).execution_options(synchronize_session=False)
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        # evict the deleted instance from the identity map
        db.expunge_all()
        self._log.debug("delete: rowcount=%s", result.rowcount)
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _barcode_exists(db, barcode: str) -> bool:
        return db.execute(select(exists().where(Spiel.barcode == barcode))).scalar()

    def _validate_create(self, db, spiel: Spiel) -> None:
        self._log.debug("_validate_create: barcode=%s", spiel.barcode)
        if self._barcode_exists(db, spiel.barcode):
            raise BarcodeExistsException(spiel.barcode)

    def _validate_update(self, db, spiel_id: int, version_str: str) -> Spiel:
        match = VERSION_PATTERN.match(version_str or '')
        if match is None:
            raise VersionInvalidException(version_str)
        version = int(match.group(1))

        spiel_db = self._read.find_by_id(db, spiel_id)
        if version < spiel_db.version:
            self._log.debug("_validate_update: version=%d, stored=%d", version, spiel_db.version)
            raise VersionOutdatedException(version)
        return spiel_db

    def _sendmail(self, spiel: Spiel) -> None:
        if self._mail is None:
            return
        subject = f"New Spiel {spiel.id}"
        name = spiel.name.name if spiel.name is not None else 'N/A'
        body = f"The Spiel with name <strong>{name}</strong> has been created"
        self._mail.send(subject, body)
