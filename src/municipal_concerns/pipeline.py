"""Main orchestration pipeline: discover, extract, chunk and analyze per municipality."""

import logging
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional

from tqdm import tqdm

from .analyzer import ConcernAnalyzer, build_classifier_chain, distinct_values, fallback_summary
from .chunker import chunk_documents
from .config import RunConfig
from .discoverer import LinkDiscoverer
from .extractors import ContentExtractor, ExtractionError
from .fetcher import Fetcher
from .models import (
    SEVERITIES,
    STATUS_COMPLETED,
    STATUS_ERROR,
    STATUS_SKIPPED,
    DiscoveredLink,
    ExtractedDocument,
    Municipality,
    PipelineResult,
    TextChunk,
)
from .municipalities import load_municipalities, select_municipalities
from .quality import quality_rejection_reason
from .robots import AllowAllGate, RobotsGate
from .utils import setup_logging, slugify, write_json_atomic

logger = logging.getLogger(__name__)

SKIP_NO_URLS = 'no_urls_discovered'
SKIP_NO_DOCUMENTS = 'no_documents_extracted'
SKIP_NO_CHUNKS = 'no_chunks_created'


class Pipeline:
    """Sequential per-municipality pipeline.

    Errors never cross the municipality boundary: a municipality that fails
    gets an ``error`` result and the run moves on to the next one.
    """

    def __init__(self, config: RunConfig, analyzer: Optional[ConcernAnalyzer] = None,
                 fetcher: Optional[Fetcher] = None):
        """Initialize pipeline.

        Args:
            config: Run configuration
            analyzer: Concern analyzer; without one the analysis stage yields no concerns
            fetcher: HTTP fetcher shared by every stage (created from config if omitted)
        """
        self.config = config
        self.analyzer = analyzer
        self.fetcher = fetcher if fetcher is not None else Fetcher(config)
        self.extractor = ContentExtractor(config, self.fetcher)

    def _robots_gate(self, municipality: Municipality):
        if not self.config.respect_robots or not municipality.base_url:
            return AllowAllGate()
        return RobotsGate(municipality.base_url, self.fetcher, self.config.user_agent,
                          timeout=self.config.robots_timeout)

    def _save_artifact(self, municipality: Municipality, filename: str, records: List) -> None:
        if not self.config.save_artifacts:
            return
        path = self.config.get_municipality_dir(slugify(municipality.name)) / filename
        write_json_atomic(path, [record.to_dict() for record in records])
        logger.debug(f"Saved {len(records)} records to {path}")

    def discover(self, municipality: Municipality, robots) -> List[DiscoveredLink]:
        """Stage 1: find relevant links on the municipality's website."""
        discoverer = LinkDiscoverer(self.config, self.fetcher, robots)
        links = discoverer.discover(municipality)
        if links:
            logger.info(f"Link categories: {discoverer.category_counts(links)}")
        self._save_artifact(municipality, 'discovered_links.json', links)
        return links

    def extract(self, municipality: Municipality, links: List[DiscoveredLink],
                robots) -> List[ExtractedDocument]:
        """Stage 2: extract and quality-filter documents.

        Stops early after ``max_consecutive_failures`` fetch/parse failures in a row.
        """
        documents = []
        consecutive_failures = 0
        max_failures = self.config.max_consecutive_failures

        for link in tqdm(links, desc=f"Extracting {municipality.name}", unit="docs",
                         disable=not self.config.show_progress, leave=False):
            if not robots.is_allowed(link.url):
                logger.debug(f"Skipping {link.url}: blocked by robots.txt")
                continue

            try:
                document = self.extractor.extract(link)
            except ExtractionError as e:
                consecutive_failures += 1
                logger.warning(str(e))
                if consecutive_failures >= max_failures:
                    logger.warning(
                        f"Too many consecutive failures ({consecutive_failures}), "
                        f"stopping extraction for {municipality.name}"
                    )
                    break
                continue

            reason = quality_rejection_reason(document.raw_text, self.config.min_text_chars,
                                              self.config.max_boilerplate_ratio)
            if reason:
                logger.info(f"Skipping {link.url}: low quality content ({reason})")
                continue

            consecutive_failures = 0
            documents.append(document)

        self._save_artifact(municipality, 'extracted_documents.json', documents)
        return documents

    def chunk(self, municipality: Municipality, documents: List[ExtractedDocument]) -> List[TextChunk]:
        """Stage 3: filter documents for community signal and split into chunks."""
        chunks = chunk_documents(municipality.name, documents, self.config)
        self._save_artifact(municipality, 'text_chunks.json', chunks)
        return chunks

    def analyze(self, municipality: Municipality, chunks: List[TextChunk]):
        """Stage 4: hand chunks to the external classifier."""
        if self.analyzer is None:
            logger.info("Concern analysis disabled; no classifier configured")
            return []
        return self.analyzer.analyze(municipality.name, chunks)

    def process_municipality(self, municipality: Municipality, index: int = 0,
                             total: int = 1) -> PipelineResult:
        """Run the four stages for one municipality.

        Returns:
            completed, skipped (with a reason code) or error result
        """
        logger.info("=" * 80)
        logger.info(f"Processing municipality {index + 1}/{total}: {municipality.name}")
        logger.info("=" * 80)

        urls_discovered = documents_extracted = chunks_created = 0
        try:
            robots = self._robots_gate(municipality)

            logger.info("Step 1: Discovering relevant pages...")
            links = self.discover(municipality, robots)
            urls_discovered = len(links)
            logger.info(f"Discovered {urls_discovered} relevant URLs")
            if not links:
                return self._skipped(municipality, SKIP_NO_URLS)

            logger.info("Step 2: Extracting documents...")
            documents = self.extract(municipality, links, robots)
            documents_extracted = len(documents)
            logger.info(f"Extracted {documents_extracted} documents")
            if not documents:
                return self._skipped(municipality, SKIP_NO_DOCUMENTS, urls_discovered)

            logger.info("Step 3: Chunking documents...")
            chunks = self.chunk(municipality, documents)
            chunks_created = len(chunks)
            logger.info(f"Created {chunks_created} chunks")
            if not chunks:
                return self._skipped(municipality, SKIP_NO_CHUNKS, urls_discovered, documents_extracted)

            logger.info("Step 4: Analyzing chunks...")
            concerns = self.analyze(municipality, chunks)
            logger.info(f"Analysis complete: {len(concerns)} unique concerns identified")

            return PipelineResult(
                municipality=municipality.name,
                status=STATUS_COMPLETED,
                urls_discovered=urls_discovered,
                documents_extracted=documents_extracted,
                chunks_created=chunks_created,
                concerns=concerns,
            )

        except Exception as e:
            logger.error(f"Error processing {municipality.name}: {e}", exc_info=True)
            return PipelineResult(
                municipality=municipality.name,
                status=STATUS_ERROR,
                error=str(e),
                urls_discovered=urls_discovered,
                documents_extracted=documents_extracted,
                chunks_created=chunks_created,
            )

    @staticmethod
    def _skipped(municipality: Municipality, reason: str, urls: int = 0,
                 documents: int = 0) -> PipelineResult:
        logger.warning(f"Skipping {municipality.name}: {reason}")
        return PipelineResult(
            municipality=municipality.name,
            status=STATUS_SKIPPED,
            reason=reason,
            urls_discovered=urls,
            documents_extracted=documents,
        )

    def run(self, municipalities: List[Municipality]) -> Dict:
        """Process municipalities one after another and save the results.

        Args:
            municipalities: Municipalities to process, in order

        Returns:
            Final results dict (also written to pipeline_results.json)
        """
        total = len(municipalities)
        results: List[PipelineResult] = []
        counts = {STATUS_COMPLETED: 0, STATUS_SKIPPED: 0, STATUS_ERROR: 0}

        for i, municipality in enumerate(tqdm(municipalities, desc="Municipalities", unit="city",
                                              disable=not self.config.show_progress)):
            result = self.process_municipality(municipality, i, total)
            results.append(result)
            counts[result.status] += 1

            logger.info(
                f"Progress: {counts[STATUS_COMPLETED]} completed, "
                f"{counts[STATUS_SKIPPED]} skipped, {counts[STATUS_ERROR]} errors"
            )

            if self.config.snapshot_every and (i + 1) % self.config.snapshot_every == 0:
                snapshot_path = self.config.get_output_path(f"intermediate_results_{i + 1}.json")
                write_json_atomic(snapshot_path, [r.to_dict() for r in results])
                logger.info(f"Saved intermediate results to {snapshot_path}")

            if i < total - 1 and self.config.municipality_delay > 0:
                time.sleep(self.config.municipality_delay)

        total_concerns = sum(r.concerns_count for r in results)
        final_results = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'summary': {
                'total_cities': total,
                'completed': counts[STATUS_COMPLETED],
                'skipped': counts[STATUS_SKIPPED],
                'errors': counts[STATUS_ERROR],
                'total_concerns': total_concerns,
            },
            'results': [r.to_dict() for r in results],
        }

        output_path = self.config.get_output_path("pipeline_results.json")
        write_json_atomic(output_path, final_results)
        logger.info(f"Final results saved to {output_path}")

        report_path = self.config.get_output_path("analysis_summary.json")
        write_json_atomic(report_path, build_summary_report(results))
        logger.info(f"Analysis summary saved to {report_path}")

        summaries = [summarize_municipality(r, self.analyzer)
                     for r in results if r.status == STATUS_COMPLETED]
        summaries_path = self.config.get_output_path("municipality_summaries.json")
        write_json_atomic(summaries_path, summaries)
        logger.info(f"Municipality summaries saved to {summaries_path}")

        logger.info("=" * 80)
        logger.info("PIPELINE COMPLETE")
        logger.info(f"Total municipalities processed: {total}")
        logger.info(f"Completed: {counts[STATUS_COMPLETED]}, Skipped: {counts[STATUS_SKIPPED]}, "
                    f"Errors: {counts[STATUS_ERROR]}")
        logger.info(f"Total community concerns identified: {total_concerns}")

        return final_results


def build_summary_report(results: List[PipelineResult]) -> Dict:
    """Aggregate concerns of completed municipalities by category and severity."""
    completed = [r for r in results if r.status == STATUS_COMPLETED]

    by_category: Dict[str, int] = {}
    by_severity = {severity: 0 for severity in SEVERITIES}
    for result in completed:
        for concern in result.concerns:
            by_category[concern.category] = by_category.get(concern.category, 0) + 1
            by_severity[concern.severity] = by_severity.get(concern.severity, 0) + 1

    top = sorted(by_category.items(), key=lambda item: item[1], reverse=True)[:5]

    return {
        'generated_at': datetime.now(timezone.utc).isoformat(),
        'cities_analyzed': len(completed),
        'total_concerns': sum(by_category.values()),
        'concerns_by_category': by_category,
        'concerns_by_severity': by_severity,
        'top_concern_categories': [[category, count] for category, count in top],
    }


def summarize_municipality(result: PipelineResult, analyzer: Optional[ConcernAnalyzer] = None) -> Dict:
    """Build the summary record of one completed municipality.

    Categories are listed most frequent first. The prose summary comes from the
    analyzer when there is one; otherwise it is built from the records.

    Args:
        result: Completed municipality result
        analyzer: Analyzer used for the run, if any

    Returns:
        Summary record for municipality_summaries.json
    """
    concerns = result.concerns

    by_category: Dict[str, int] = {}
    for concern in concerns:
        by_category[concern.category] = by_category.get(concern.category, 0) + 1
    top_categories = [category for category, _ in
                      sorted(by_category.items(), key=lambda item: item[1], reverse=True)]

    summary = None
    if analyzer is not None and concerns:
        try:
            summary = analyzer.summarize(result.municipality, concerns)
        except Exception as e:
            logger.error(f"Summary failed for {result.municipality}: {e}")
    if not summary:
        summary = fallback_summary(result.municipality, concerns)

    return {
        'municipality': result.municipality,
        'concerns_count': len(concerns),
        'top_services_affected': top_categories,
        'locations_mentioned': distinct_values(c.location for c in concerns),
        'summary': summary,
    }


def run_pipeline(config: RunConfig, analyzer: Optional[ConcernAnalyzer] = None) -> Dict:
    """Run the complete pipeline from the municipality reference file.

    Steps:
    1. Initialize logging
    2. Load and select municipalities
    3. Build the concern analyzer (when LLM analysis is enabled)
    4. Process every municipality and save outputs

    Args:
        config: Run configuration
        analyzer: Pre-built analyzer (overrides config.use_llm)

    Returns:
        Final results dict, or {'error': message} when the run cannot start
    """
    setup_logging(level=logging.INFO)
    logger.info("=" * 80)
    logger.info("Starting Municipal Community Concerns Pipeline")
    logger.info("=" * 80)

    if config.municipalities_file is None:
        return {'error': 'No municipalities file configured'}

    try:
        municipalities = load_municipalities(config.municipalities_file)
    except ValueError as e:
        logger.error(f"Could not load municipalities: {e}")
        return {'error': str(e)}

    selected = select_municipalities(municipalities, config.municipality_types, config.limit)
    logger.info(f"Selected {len(selected)} of {len(municipalities)} municipalities "
                f"(types: {', '.join(config.municipality_types) or 'all'})")
    if not selected:
        return {'error': 'No municipalities match the selection'}

    client = None
    if analyzer is None and config.use_llm:
        if not config.openai_api_key:
            return {'error': 'LLM analysis requested but no OpenAI API key is configured'}
        from openai import OpenAI
        client = OpenAI(api_key=config.openai_api_key)
        analyzer = ConcernAnalyzer(build_classifier_chain(config, client), delay=config.analysis_delay)

    pipeline = Pipeline(config, analyzer=analyzer)
    try:
        return pipeline.run(selected)
    finally:
        pipeline.fetcher.session.close()
        if client is not None:
            client.close()
