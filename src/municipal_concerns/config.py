"""Configuration management for the municipal concerns pipeline."""

import logging
import os
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import List, Optional

import yaml

logger = logging.getLogger(__name__)


@dataclass
class RunConfig:
    """Configuration for a single pipeline run.

    Attributes:
        municipalities_file: CSV or JSON reference list of municipalities
        output_dir: Directory for JSON artifacts and result snapshots
        municipality_types: Only process municipalities of these types (empty = all)
        limit: Process at most this many municipalities (None = all)
        user_agent: User agent string for HTTP requests and robots.txt matching
        politeness_delay: Seconds between two consecutive HTTP requests
        robots_timeout: Timeout for the robots.txt request
        page_timeout: Timeout for pages fetched during discovery
        html_timeout: Timeout for HTML documents fetched during extraction
        pdf_timeout: Timeout for PDF downloads
        max_depth: Maximum crawl depth from the municipality home page
        discovery_timeout: Wall-clock budget (seconds) for one municipality's crawl
        max_pdf_mb: Maximum PDF size in MB to download
        respect_robots: Whether to honour robots.txt
        min_text_chars: Minimum document length for the quality gate and chunker
        max_boilerplate_ratio: Maximum share of navigation words in a document
        max_chunk_chars: Maximum chunk size in characters
        min_chunk_chars: Chunks shorter than this are discarded
        max_chunks_per_municipality: Chunks handed to the classifier per municipality
        max_consecutive_failures: Extraction stops after this many failures in a row
        municipality_delay: Seconds to wait between municipalities
        snapshot_every: Save intermediate results every N municipalities (0 = never)
        save_artifacts: Write per-municipality links/documents/chunks JSON files
        show_progress: Show tqdm progress bars
        use_llm: Classify chunks with the OpenAI API
        openai_api_key: API key (defaults to OPENAI_API_KEY)
        classifier_models: Models tried in order for each chunk
        analysis_delay: Seconds to wait between classification calls
    """

    municipalities_file: Optional[Path] = None
    output_dir: Path = field(default_factory=lambda: Path("output"))

    # Selection
    municipality_types: List[str] = field(default_factory=lambda: ["City"])
    limit: Optional[int] = None

    # Crawling behavior
    user_agent: str = "MunicipalConcernsBot/1.0 (civic-tech research)"
    politeness_delay: float = 1.0
    robots_timeout: float = 5.0
    page_timeout: float = 10.0
    html_timeout: float = 15.0
    pdf_timeout: float = 30.0
    max_depth: int = 3
    discovery_timeout: float = 180.0
    max_pdf_mb: float = 50.0
    respect_robots: bool = True

    # Filtering and chunking
    min_text_chars: int = 300
    max_boilerplate_ratio: float = 0.3
    max_chunk_chars: int = 2400
    min_chunk_chars: int = 100
    max_chunks_per_municipality: int = 30

    # Orchestration
    max_consecutive_failures: int = 5
    municipality_delay: float = 2.0
    snapshot_every: int = 5
    save_artifacts: bool = True
    show_progress: bool = True

    # LLM settings (optional)
    use_llm: bool = False
    openai_api_key: Optional[str] = None
    classifier_models: List[str] = field(default_factory=lambda: ["gpt-4o-mini", "gpt-4o"])
    analysis_delay: float = 1.0

    def __post_init__(self):
        """Validate and normalize configuration."""
        if isinstance(self.output_dir, str):
            self.output_dir = Path(self.output_dir)
        if isinstance(self.municipalities_file, str):
            self.municipalities_file = Path(self.municipalities_file)

        if self.max_depth < 0:
            raise ValueError(f"max_depth must be >= 0, got {self.max_depth}")
        if self.min_chunk_chars > self.max_chunk_chars:
            raise ValueError(
                f"min_chunk_chars ({self.min_chunk_chars}) cannot exceed "
                f"max_chunk_chars ({self.max_chunk_chars})"
            )
        if self.max_chunks_per_municipality < 1:
            raise ValueError("max_chunks_per_municipality must be at least 1")
        if self.max_consecutive_failures < 1:
            raise ValueError("max_consecutive_failures must be at least 1")
        if not 0.0 <= self.max_boilerplate_ratio <= 1.0:
            raise ValueError(f"max_boilerplate_ratio must be within [0, 1], got {self.max_boilerplate_ratio}")
        if self.limit is not None and self.limit < 1:
            raise ValueError(f"limit must be positive, got {self.limit}")

        # Load OpenAI key from env if not provided
        if self.use_llm and not self.openai_api_key:
            self.openai_api_key = os.getenv("OPENAI_API_KEY")
            if not self.openai_api_key:
                logger.warning("use_llm is set but OPENAI_API_KEY is not defined")

        self.output_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_yaml(cls, path: Path) -> "RunConfig":
        """Load configuration from YAML file."""
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a mapping of settings")

        unknown = sorted(set(data) - {item.name for item in fields(cls)})
        if unknown:
            raise ValueError(f"Unknown setting(s) in {path}: {', '.join(map(str, unknown))}")
        return cls(**data)

    @classmethod
    def from_env(cls) -> "RunConfig":
        """Load configuration from environment variables."""
        types = os.getenv("MUNICIPAL_TYPES", "City")
        return cls(
            municipalities_file=os.getenv("MUNICIPAL_FILE") or None,
            output_dir=Path(os.getenv("MUNICIPAL_OUTPUT_DIR", "output")),
            municipality_types=[t.strip() for t in types.split(",") if t.strip()],
            politeness_delay=float(os.getenv("MUNICIPAL_POLITENESS_DELAY", "1.0")),
            discovery_timeout=float(os.getenv("MUNICIPAL_DISCOVERY_TIMEOUT", "180")),
            use_llm=os.getenv("MUNICIPAL_USE_LLM", "").lower() == "true",
        )

    def to_yaml(self, path: Path):
        """Save configuration to YAML file (the API key is never written)."""
        data = asdict(self)
        data['output_dir'] = str(data['output_dir'])
        if data['municipalities_file'] is not None:
            data['municipalities_file'] = str(data['municipalities_file'])
        data.pop('openai_api_key', None)

        with open(path, 'w', encoding='utf-8') as f:
            yaml.dump(data, f, default_flow_style=False)

    def get_output_path(self, filename: str) -> Path:
        """Get full path for an output file."""
        return self.output_dir / filename

    def get_municipality_dir(self, slug: str) -> Path:
        """Directory holding one municipality's stage artifacts."""
        return self.output_dir / slug
