"""Records passed between pipeline stages."""

from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional

LINK_CATEGORIES = ('council', 'minutes', 'agenda', 'committee', 'consultation', 'other')
CONCERN_CATEGORIES = (
    'housing', 'transit', 'healthcare', 'infrastructure',
    'safety', 'utilities', 'social', 'other',
)
SEVERITIES = ('low', 'medium', 'high')
SEVERITY_ORDER = {'low': 1, 'medium': 2, 'high': 3}

STATUS_COMPLETED = 'completed'
STATUS_SKIPPED = 'skipped'
STATUS_ERROR = 'error'


@dataclass(frozen=True)
class Municipality:
    """A municipality from the reference list. Immutable during a run."""
    name: str
    type: str = ''
    base_url: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class DiscoveredLink:
    municipality: str
    category: str
    url: str

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class ExtractedDocument:
    municipality: str
    source_url: str
    content_type: str  # 'html' or 'pdf'
    title: str
    date_detected: str
    raw_text: str

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class TextChunk:
    """A sentence-aligned slice of one document.

    chunk_index is 1-based and all chunks of a document share total_chunks.
    """
    municipality: str
    source_url: str
    title: str
    chunk_index: int
    total_chunks: int
    text: str

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class Concern:
    """A community concern reported by the classifier."""
    description: str
    category: str
    severity: str
    location: str = ''
    summary: str = ''
    source_url: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class PipelineResult:
    """Terminal outcome for one municipality. Never mutated after creation."""
    municipality: str
    status: str
    reason: Optional[str] = None
    error: Optional[str] = None
    urls_discovered: int = 0
    documents_extracted: int = 0
    chunks_created: int = 0
    concerns: List[Concern] = field(default_factory=list)

    @property
    def concerns_count(self) -> int:
        return len(self.concerns)

    def to_dict(self) -> Dict:
        data = {
            'municipality': self.municipality,
            'status': self.status,
            'urls_discovered': self.urls_discovered,
            'documents_extracted': self.documents_extracted,
            'chunks_created': self.chunks_created,
            'concerns_count': self.concerns_count,
            'concerns': [c.to_dict() for c in self.concerns],
        }
        if self.reason:
            data['reason'] = self.reason
        if self.error:
            data['error'] = self.error
        return data
