"""Validation of incoming Spiel payloads (REST bodies and GraphQL inputs)."""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, ValidationError, field_validator

from database import MAX_RATING, Bild, Name, Spiel, SpielArt

# EAN-13, optionally with hyphens between the groups
BARCODE_PATTERN = r'^(?:\d{13}|\d{3}(?:-\d{1,5}){3}-\d)$'

MAX_RABATT = Decimal('1')


class NameDTO(BaseModel):
    name: str = Field(..., pattern=r'^\w', max_length=40)
    untertitel: Optional[str] = Field(default=None, max_length=40)


class BildDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    beschriftung: str = Field(..., pattern=r'^\w', max_length=32)
    content_type: str = Field(..., alias='contentType', max_length=16)


class SpielDtoOhneRef(BaseModel):
    """Scalar fields of a Spiel, used as the update payload."""

    barcode: str = Field(..., pattern=BARCODE_PATTERN)
    rating: int = Field(..., ge=0, le=MAX_RATING)
    art: Optional[SpielArt] = None
    preis: Decimal = Field(..., ge=0)
    rabatt: Decimal = Field(default=Decimal('0'), ge=0, le=MAX_RABATT)
    lieferbar: bool = False
    datum: Optional[date] = None
    homepage: Optional[AnyHttpUrl] = None
    schlagwoerter: Optional[List[str]] = None

    @field_validator('rabatt', mode='before')
    @classmethod
    def _rabatt_default(cls, value):
        return Decimal('0') if value is None else value

    @field_validator('lieferbar', mode='before')
    @classmethod
    def _lieferbar_default(cls, value):
        return False if value is None else value

    @field_validator('schlagwoerter')
    @classmethod
    def _unique_schlagwoerter(cls, value):
        if value is not None and len(set(value)) != len(value):
            raise ValueError('must contain unique values')
        return value

    def columns(self) -> Dict[str, Any]:
        """All column values for :class:`database.Spiel` (no Name/Bild)."""
        return self._column_values(exclude_unset=False)

    def scalar_fields(self) -> Dict[str, Any]:
        """Column values the client actually sent, to merge into a stored Spiel."""
        return self._column_values(exclude_unset=True)

    def _column_values(self, exclude_unset: bool) -> Dict[str, Any]:
        values = self.model_dump(include=set(SpielDtoOhneRef.model_fields),
                                 exclude_unset=exclude_unset)
        if values.get('homepage') is not None:
            values['homepage'] = str(values['homepage'])
        return values


class SpielDTO(SpielDtoOhneRef):
    """Create payload: scalar fields plus the name and optional images."""

    name: NameDTO
    bilder: Optional[List[BildDTO]] = None

    def to_spiel(self) -> Spiel:
        """Build a transient :class:`database.Spiel` graph from the payload."""
        spiel = Spiel(**self.columns())
        spiel.name = Name(name=self.name.name, untertitel=self.name.untertitel)
        spiel.bilder = [
            Bild(beschriftung=b.beschriftung, content_type=b.content_type)
            for b in (self.bilder or [])
        ]
        return spiel


def validation_messages(exc: ValidationError) -> List[str]:
    """Flatten a pydantic error into ``"<dotted.path> <message>"`` strings."""
    messages = []
    for err in exc.errors():
        path = '.'.join(str(part) for part in err['loc'])
        messages.append(f"{path} {err['msg']}".strip())
    return messages
