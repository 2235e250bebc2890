from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

Bbox = List[float]


@dataclass
class CragMeta:
    """Identifies a downloaded crag and where its map screenshot is cached."""
    cragId: str
    name: str
    downloadedAt: int
    bbox4326: Bbox
    bbox3857: Bbox
    screenshotRequestUrl: str
    screenshotUpdatedAt: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'CragMeta':
        return cls(
            cragId=d['cragId'],
            name=d['name'],
            downloadedAt=d['downloadedAt'],
            bbox4326=list(d['bbox4326']),
            bbox3857=list(d['bbox3857']),
            screenshotRequestUrl=d['screenshotRequestUrl'],
            screenshotUpdatedAt=d['screenshotUpdatedAt'],
        )


CRAG_FIELDS = ('id', 'name', 'latitude', 'longitude', 'region_id', 'description',
               'access_notes', 'rock_type', 'type', 'boundary')


@dataclass
class CragRecord:
    cragId: str
    crag: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {'cragId': self.cragId, 'crag': dict(self.crag)}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'CragRecord':
        return cls(cragId=d['cragId'], crag=dict(d['crag']))

    @classmethod
    def from_api(cls, crag: Dict[str, Any]) -> 'CragRecord':
        return cls(cragId=crag['id'], crag={k: crag.get(k) for k in CRAG_FIELDS})


@dataclass
class ImageRecord:
    """A route photo of a downloaded crag with its route-line overlays."""
    imageId: str
    cragId: str
    url: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_verified: bool = False
    verification_count: int = 0
    width: Optional[int] = None
    height: Optional[int] = None
    natural_width: Optional[int] = None
    natural_height: Optional[int] = None
    route_lines: List[Dict[str, Any]] = field(default_factory=list)
    offlineIndex: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        if d['offlineIndex'] is None:
            del d['offlineIndex']
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'ImageRecord':
        return cls(**{k: d.get(k) for k in cls.__dataclass_fields__ if k in d})

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass
class DownloadProgress:
    phase: str
    completed: int
    total: int
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        if d['message'] is None:
            del d['message']
        return d
