"""
Database and input models using SQLModel (SQLAlchemy + Pydantic).

Schema:
- Convocatoria: a stored listing (funding / grant / job announcement)

Input:
- ListingRecord: one listing as produced by the extraction stage, before
  it is resolved to a dedup key and upserted
"""

from datetime import datetime, date, timezone
from typing import Any, Dict, Optional

from dateutil import parser as dateparser
from pydantic import BaseModel, ConfigDict, Field as PydanticField, field_validator
from sqlalchemy import Column, Text
from sqlmodel import SQLModel, Field


def utc_now_naive() -> datetime:
    """Return current UTC time as timezone-naive datetime.

    PostgreSQL TIMESTAMP WITHOUT TIME ZONE columns require naive datetimes.
    Using timezone-aware datetimes causes asyncpg DataError.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


ESTADOS = ("abierta", "cerrada")
DEFAULT_ESTADO = "abierta"

# Values the extractor emits that mean "still open"
_OPEN_ALIASES = {"vigente", "activa", "abierto", "open"}

# Upper bound of the dedup_key column
DEDUP_KEY_COLUMN_LENGTH = 255

# Business fields, in storage (column) naming
BUSINESS_FIELDS = (
    "titulo",
    "entidad",
    "descripcion",
    "fecha_cierre",
    "fecha_publicacion",
    "enlace",
    "monto",
    "requisitos",
    "estado",
    "categoria",
    "fuente",
)


class Convocatoria(SQLModel, table=True):
    """A stored listing."""
    __tablename__ = "convocatorias"

    id: Optional[int] = Field(default=None, primary_key=True)

    # Dedup key: trimmed titulo or encoded enlace, depending on deployment policy.
    # NULL for records that could not be keyed (always inserted as new).
    dedup_key: Optional[str] = Field(
        default=None, index=True, unique=True, max_length=DEDUP_KEY_COLUMN_LENGTH
    )

    titulo: Optional[str] = None
    entidad: Optional[str] = None
    descripcion: Optional[str] = Field(default=None, sa_column=Column(Text))
    fecha_cierre: Optional[date] = None
    fecha_publicacion: Optional[date] = None
    enlace: Optional[str] = None
    monto: Optional[str] = None
    requisitos: Optional[str] = Field(default=None, sa_column=Column(Text))
    estado: str = Field(default=DEFAULT_ESTADO, index=True)
    categoria: Optional[str] = None
    fuente: Optional[str] = None

    # Assigned by the store at commit time
    created_at: datetime = Field(default_factory=utc_now_naive, index=True)
    updated_at: datetime = Field(default_factory=utc_now_naive)

    def to_dict(self) -> Dict[str, Any]:
        """API representation (camelCase, as the frontend expects)."""
        return {
            "id": self.id,
            "titulo": self.titulo,
            "entidad": self.entidad,
            "descripcion": self.descripcion,
            "fechaCierre": self.fecha_cierre.isoformat() if self.fecha_cierre else None,
            "fechaPublicacion": self.fecha_publicacion.isoformat() if self.fecha_publicacion else None,
            "enlace": self.enlace,
            "monto": self.monto,
            "requisitos": self.requisitos,
            "estado": self.estado,
            "categoria": self.categoria,
            "fuente": self.fuente,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class ListingRecord(BaseModel):
    """One extracted listing ("convocatoria") as received from the extraction stage."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    titulo: Optional[str] = PydanticField(default=None, description="Nombre completo de la convocatoria")
    entidad: Optional[str] = PydanticField(default=None, description="Nombre de la entidad oferente")
    descripcion: Optional[str] = PydanticField(default=None, description="Descripción detallada de la convocatoria")
    fecha_cierre: Optional[date] = PydanticField(
        default=None, alias="fechaCierre", description="Fecha de cierre en formato YYYY-MM-DD, o null"
    )
    fecha_publicacion: Optional[date] = PydanticField(
        default=None, alias="fechaPublicacion", description="Fecha de publicación en formato YYYY-MM-DD, o null"
    )
    enlace: Optional[str] = PydanticField(default=None, description="URL directa a la convocatoria, o null")
    monto: Optional[str] = PydanticField(default=None, description="Valor económico o número de vacantes, o null")
    requisitos: Optional[str] = PydanticField(default=None, description="Requisitos principales, o null")
    estado: str = PydanticField(default=DEFAULT_ESTADO, description="Estado actual: abierta o cerrada")
    categoria: Optional[str] = None
    fuente: Optional[str] = None

    @field_validator(
        "titulo", "entidad", "descripcion", "enlace", "monto", "requisitos", "categoria", "fuente",
        mode="before",
    )
    @classmethod
    def coerce_text(cls, v: Any) -> Optional[str]:
        """Extractors sometimes emit numbers (monto) or lists (requisitos) - keep everything as text."""
        if v is None:
            return None
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        if isinstance(v, (list, tuple)):
            items = [str(item).strip() for item in v if item is not None and str(item).strip()]
            return "; ".join(items) or None
        return v

    @field_validator("fecha_cierre", "fecha_publicacion", mode="before")
    @classmethod
    def parse_date(cls, v: Any) -> Optional[date]:
        """Accept ISO or loosely formatted dates; anything unparseable becomes None."""
        if v is None or isinstance(v, date):
            return v
        if not isinstance(v, str) or not v.strip():
            return None
        text = v.strip()
        try:
            # Spanish-language sources write dates day first (31/12/2025)
            if "/" in text:
                return dateparser.parse(text, dayfirst=True).date()
            return dateparser.isoparse(text).date()
        except (ValueError, OverflowError):
            return None

    @field_validator("estado", mode="before")
    @classmethod
    def normalize_estado(cls, v: Any) -> str:
        if not isinstance(v, str):
            return DEFAULT_ESTADO
        value = v.strip().lower()
        if value in ESTADOS:
            return value
        if value in _OPEN_ALIASES:
            return "abierta"
        return DEFAULT_ESTADO

    def business_fields(self) -> Dict[str, Any]:
        """Field values keyed by storage column name."""
        return {name: getattr(self, name) for name in BUSINESS_FIELDS}
