"""Data models for event scraping, processing and reporting."""
import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


def slugify(text: str) -> str:
    """Lowercase, strip accents and join words with hyphens."""
    ascii_text = unicodedata.normalize('NFKD', text).encode('ascii', 'ignore').decode('ascii')
    return re.sub(r'[^a-z0-9]+', '-', ascii_text.lower()).strip('-')


@dataclass(frozen=True)
class Region:
    """Target city and state (two-letter code) for a scrape."""
    city: str
    state: str

    @classmethod
    def parse(cls, text: str) -> 'Region':
        """
        Parse a region descriptor such as "Ji-Paraná,RO".

        Args:
            text: "city,state" string

        Returns:
            Region instance

        Raises:
            ValueError: If the text has no state part
        """
        parts = [part.strip() for part in text.split(',')]
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise ValueError(f"Region must look like 'city,state': {text!r}")
        return cls(city=parts[0], state=parts[1].upper())

    @property
    def city_slug(self) -> str:
        return slugify(self.city)

    def __str__(self) -> str:
        return f"{self.city},{self.state}"


@dataclass(frozen=True)
class RawEventRecord:
    """Raw event as extracted from a source page, before normalization."""
    title: Optional[str]
    source: str
    source_url: Optional[str]
    description: str = ''
    date_text: Optional[str] = None
    time_text: Optional[str] = None
    location_text: Optional[str] = None
    price_text: Optional[str] = None
    image_url: Optional[str] = None
    organizer: Optional[str] = None
    category_hint: Optional[str] = None


@dataclass
class PriceRange:
    """Parsed ticket price range."""
    min: Optional[float]
    max: Optional[float]
    currency: str = 'BRL'
    is_free: bool = False


@dataclass
class Event:
    """Canonical catalog event."""
    id: str
    title: str
    description: str
    date: str
    time: Optional[str]
    venue: Optional[str]
    city: Optional[str]
    state: Optional[str]
    category: str
    price: Optional[PriceRange]
    source: str
    source_url: Optional[str]
    image_url: Optional[str]
    organizer: Optional[str]
    content_key: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class HealthState(Enum):
    """Structure health state of a source."""
    HEALTHY = 'healthy'
    DEGRADED = 'degraded'
    FAILING = 'failing'


@dataclass
class SourceHealth:
    """Result of one structure probe, plus the running state machine."""
    source: str
    checked_at: str
    landmarks: Dict[str, bool]
    overall_health: float
    consecutive_failures: int = 0
    state: HealthState = HealthState.HEALTHY
    acknowledged: bool = False
    error: Optional[str] = None

    @property
    def failed_landmarks(self) -> List[str]:
        return sorted(name for name, passed in self.landmarks.items() if not passed)


class RunStatus(Enum):
    """Final status of one source in one orchestrator run."""
    OK = 'ok'
    DEGRADED = 'degraded'
    FAILED = 'failed'
    SKIPPED = 'skipped: degraded'


@dataclass
class Rejection:
    """A raw record that did not make it into the catalog."""
    record: RawEventRecord
    reason: str


@dataclass
class ProcessingResult:
    """Output of EventProcessor.process."""
    accepted: List[Event]
    rejections: List[Rejection]
    duplicates: int = 0


class UpsertOutcome(Enum):
    """What an upsert did to the catalog."""
    INSERTED = 'inserted'
    UPDATED = 'updated'
    UNCHANGED = 'unchanged'


@dataclass
class ScrapeRunReport:
    """Audit record of one source in one orchestrator run."""
    run_id: str
    source: str
    started_at: str
    finished_at: Optional[str] = None
    fetched: int = 0
    accepted: int = 0
    rejected: int = 0
    duplicates: int = 0
    rejections: List[Dict[str, str]] = field(default_factory=list)
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    retries: int = 0
    status: RunStatus = RunStatus.OK
    detail: str = ''
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Plain dict for logging and storage."""
        return {
            'run_id': self.run_id,
            'source': self.source,
            'started_at': self.started_at,
            'finished_at': self.finished_at,
            'fetched': self.fetched,
            'accepted': self.accepted,
            'rejected': self.rejected,
            'duplicates': self.duplicates,
            'rejections': list(self.rejections),
            'inserted': self.inserted,
            'updated': self.updated,
            'unchanged': self.unchanged,
            'retries': self.retries,
            'status': self.status.value,
            'detail': self.detail,
            'warnings': list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ScrapeRunReport':
        return cls(
            run_id=data['run_id'],
            source=data['source'],
            started_at=data['started_at'],
            finished_at=data.get('finished_at'),
            fetched=int(data.get('fetched', 0)),
            accepted=int(data.get('accepted', 0)),
            rejected=int(data.get('rejected', 0)),
            duplicates=int(data.get('duplicates', 0)),
            rejections=list(data.get('rejections', [])),
            inserted=int(data.get('inserted', 0)),
            updated=int(data.get('updated', 0)),
            unchanged=int(data.get('unchanged', 0)),
            retries=int(data.get('retries', 0)),
            status=RunStatus(data.get('status', RunStatus.OK.value)),
            detail=data.get('detail', ''),
            warnings=list(data.get('warnings', [])),
        )
