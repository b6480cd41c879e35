"""
Domain models for the Observer service.
"""

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def generate_access_token() -> str:
    """Opaque observer access token (64 hex chars)."""
    return secrets.token_hex(32)


class GeometryType(str, Enum):
    """Geometry variants a GeoObject can carry."""
    POINT = "Point"
    POLYGON = "Polygon"
    LINE = "Line"
    CIRCLE = "Circle"


@dataclass(frozen=True)
class Geometry:
    """Tagged geometry. Coordinates follow GeoJSON order: [lng, lat]."""
    type: GeometryType
    coordinates: Any
    radius: Optional[float] = None

    def __post_init__(self):
        if self.type == GeometryType.CIRCLE and (self.radius is None or self.radius <= 0):
            raise ValueError("Circle geometry requires a positive radius")

    def to_geojson(self) -> Dict[str, Any]:
        """GeoJSON geometry. Circles are sent as points; lines as LineString."""
        if self.type == GeometryType.CIRCLE:
            return {"type": "Point", "coordinates": self.coordinates}
        if self.type == GeometryType.LINE:
            return {"type": "LineString", "coordinates": self.coordinates}
        return {"type": self.type.value, "coordinates": self.coordinates}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Geometry":
        geometry_type = data.get("type")
        if geometry_type == "LineString":
            geometry_type = GeometryType.LINE.value
        return cls(
            type=GeometryType(geometry_type),
            coordinates=data.get("coordinates"),
            radius=data.get("radius"),
        )


@dataclass
class Map:
    """Aggregate root for geo objects and observers."""
    id: int
    title: str
    description: Optional[str] = None
    center_lat: float = 0.0
    center_lng: float = 0.0
    zoom_level: int = 12


@dataclass
class Side:
    """Affiliation a geo object may be tagged with."""
    id: int
    name: str
    color: Optional[str] = None
    description: Optional[str] = None


@dataclass
class GeoObject:
    """Geo-referenced object owned by a map."""
    id: int
    map_id: int
    name: str
    geometry: Geometry
    description: Optional[str] = None
    ttl: Optional[int] = None
    side_id: Optional[int] = None
    icon_url: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: Optional[datetime] = None

    def is_active(self, now: datetime) -> bool:
        """False once ttl seconds have passed since creation and since the last update."""
        if not self.ttl:
            return True
        lifetime = timedelta(seconds=self.ttl)
        if self.created_at + lifetime > now:
            return True
        return self.updated_at is not None and self.updated_at + lifetime > now

    def to_geojson_feature(self) -> Dict[str, Any]:
        properties = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "iconUrl": self.icon_url,
            "sideId": self.side_id,
            "ttl": self.ttl,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
        if self.geometry.type == GeometryType.CIRCLE:
            properties["geometryType"] = GeometryType.CIRCLE.value
            properties["radius"] = self.geometry.radius

        return {
            "type": "Feature",
            "geometry": self.geometry.to_geojson(),
            "properties": properties,
        }


@dataclass
class Observer:
    """Restricted, token-authenticated viewer bound to one map."""
    id: int
    name: str
    map_id: int
    rules: Dict[str, Any] = field(default_factory=dict)
    icon: Optional[str] = None
    description: Optional[str] = None
    access_token: str = field(default_factory=generate_access_token)
    version: int = 1
    created_at: datetime = field(default_factory=utc_now)
    updated_at: Optional[datetime] = None


def feature_collection(objects: List[GeoObject]) -> Dict[str, Any]:
    """GeoJSON FeatureCollection for a list of objects."""
    return {
        "type": "FeatureCollection",
        "features": [obj.to_geojson_feature() for obj in objects],
    }


class ObserverSummary(BaseModel):
    """Public part of an observer record."""
    id: int
    name: str
    icon: Optional[str] = None
    map_id: int


class ObserverViewResponse(BaseModel):
    """Response model for an observer view."""
    observer: ObserverSummary
    access_blocked: bool = Field(False, description="Whether a rule currently denies all access")
    objects: Dict[str, Any] = Field(..., description="GeoJSON FeatureCollection of visible objects")


class RuleDescription(BaseModel):
    """Catalog entry exposed to operators."""
    name: str
    priority: int
    stateful: bool
    config_schema: Dict[str, Any] = Field(default_factory=dict, alias="schema")

    model_config = {"populate_by_name": True}


class RuleListResponse(BaseModel):
    """Response model for the rule catalog."""
    rules: List[RuleDescription]
    total: int


class RuleValidationRequest(BaseModel):
    """Request model for validating an operator rule-set."""
    rules: Any = Field(..., description="Rule-set mapping rule name to rule config")


class RuleValidationResponse(BaseModel):
    """Response model for rule-set validation."""
    valid: bool
    errors: List[str] = Field(default_factory=list)
