"""Municipal community concerns pipeline.

Crawls municipal websites for council, minutes, agenda, committee and
consultation pages, extracts their text, filters it for community signal and
splits it into bounded chunks for LLM classification and per-municipality
summaries.
"""

__version__ = "1.0.0"

from .config import RunConfig
from .utils import setup_logging
from .models import (
    Municipality,
    DiscoveredLink,
    ExtractedDocument,
    TextChunk,
    Concern,
    PipelineResult,
)
from .fetcher import Fetcher, FetchError
from .robots import RobotsGate
from .discoverer import LinkDiscoverer, is_relevant, categorize_link
from .extractors import ContentExtractor, ExtractionError
from .quality import is_quality_content
from .chunker import chunk_documents, split_into_chunks, keyword_density
from .analyzer import (
    ClassificationError,
    ClassifierChain,
    ConcernAnalyzer,
    ConcernClassifier,
    OpenAIClassifier,
)
from .municipalities import load_municipalities
from .pipeline import Pipeline, run_pipeline, summarize_municipality

__all__ = [
    # Configuration
    'RunConfig',

    # Utilities
    'setup_logging',

    # Data model
    'Municipality',
    'DiscoveredLink',
    'ExtractedDocument',
    'TextChunk',
    'Concern',
    'PipelineResult',

    # Crawling
    'Fetcher',
    'FetchError',
    'RobotsGate',
    'LinkDiscoverer',
    'is_relevant',
    'categorize_link',

    # Text extraction and filtering
    'ContentExtractor',
    'ExtractionError',
    'is_quality_content',
    'chunk_documents',
    'split_into_chunks',
    'keyword_density',

    # Analysis
    'ClassificationError',
    'ClassifierChain',
    'ConcernAnalyzer',
    'ConcernClassifier',
    'OpenAIClassifier',

    # Pipeline
    'load_municipalities',
    'Pipeline',
    'run_pipeline',
    'summarize_municipality',
]
