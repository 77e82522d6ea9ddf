"""Community-concern classification of text chunks with an LLM provider chain."""

import json
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from .config import RunConfig
from .models import CONCERN_CATEGORIES, SEVERITIES, SEVERITY_ORDER, Concern, TextChunk

logger = logging.getLogger(__name__)

MAX_LLM_TEXT_LENGTH = 10000
JSON_DECODER = json.JSONDecoder()

SYSTEM_PROMPT = (
    "You are an analyst extracting community concerns from municipal government "
    "documents. Reply with JSON only."
)
SUMMARY_SYSTEM_PROMPT = (
    "You write short, factual briefings on community concerns raised in municipal "
    "government documents."
)


class ClassificationError(Exception):
    """A classification provider failed to produce a response."""

    def __init__(self, provider: str, cause):
        self.provider = provider
        self.cause = cause
        super().__init__(f"Classifier {provider} failed: {cause}")


def build_prompt(municipality: str, text: str) -> str:
    return f"""You are analyzing municipal government text from {municipality}.

TASKS:
1. Extract any community concerns, complaints, or unmet needs.
2. For each concern, determine its severity:
   - low: minor inconvenience or affects few residents
   - medium: moderate impact, multiple residents, or recurring problem
   - high: major impact, affects large groups, critical service or safety
3. Ignore procedural or administrative content.
4. Return ONLY valid JSON using the schema below.

Text:
{text}

Required JSON schema:
{{
  "concerns": [
    {{
      "description": "Short, clear description of the concern",
      "category": "housing | transit | healthcare | infrastructure | safety | utilities | social | other",
      "location": "Specific neighbourhood, ward, or area if mentioned, otherwise empty string",
      "severity": "low | medium | high",
      "summary": "A concise 2-4 sentence summary of the concern"
    }}
  ]
}}

If no concerns are found, return: {{ "concerns": [] }}"""


def build_summary_prompt(municipality: str, concerns: List[Concern]) -> str:
    issues = "\n".join(
        f"- [{c.category}, {c.severity}] {c.description}"
        + (f" ({c.location})" if c.location else "")
        + (f": {c.summary}" if c.summary else "")
        for c in concerns
    )
    if len(issues) > MAX_LLM_TEXT_LENGTH:
        issues = issues[:MAX_LLM_TEXT_LENGTH]

    return f"""Summarize community concerns for {municipality} in 2-3 paragraphs.
Highlight frequent service gaps, locations mentioned, and affected groups.
Be concise and factual. Reply with plain text, not JSON.

Issues:
{issues}

Summary:"""


def fallback_summary(municipality: str, concerns: List[Concern]) -> str:
    """Summary sentence built from the concern records alone."""
    if not concerns:
        return f"No community concerns were identified for {municipality}."

    categories = distinct_values(c.category for c in concerns)
    locations = distinct_values(c.location for c in concerns)
    noun = 'concern' if len(concerns) == 1 else 'concerns'
    text = f"{municipality} has {len(concerns)} community {noun} in: {', '.join(categories)}."
    if locations:
        text += f" Locations mentioned: {', '.join(locations)}."
    return text


def distinct_values(values) -> List[str]:
    """Non-empty values in first-seen order, compared case-insensitively."""
    seen = set()
    distinct = []
    for value in values:
        key = value.strip().lower()
        if key and key not in seen:
            seen.add(key)
            distinct.append(value.strip())
    return distinct


def _clean_str(value: Any) -> str:
    if value is None:
        return ''
    return str(value).strip()


def concern_from_dict(data: Dict, source_url: Optional[str] = None) -> Optional[Concern]:
    """Validate one concern record; None when it is incomplete or out of range."""
    if not isinstance(data, dict):
        return None

    description = _clean_str(data.get('description') or data.get('issue'))
    category = _clean_str(data.get('category')).lower()
    severity = _clean_str(data.get('severity')).lower()

    if not description or category not in CONCERN_CATEGORIES or severity not in SEVERITIES:
        return None

    return Concern(
        description=description,
        category=category,
        severity=severity,
        location=_clean_str(data.get('location')),
        summary=_clean_str(data.get('summary')),
        source_url=source_url,
    )


def first_json_object(raw: str) -> Optional[Any]:
    """Decode the JSON value that starts at the first ``{`` in ``raw``.

    Text after the value is ignored, so trailing prose may contain braces.
    """
    start = raw.find('{')
    if start == -1:
        return None
    try:
        value, _ = JSON_DECODER.raw_decode(raw, start)
    except ValueError:
        return None
    return value


def parse_concerns(raw: Optional[str], source_url: Optional[str] = None) -> List[Concern]:
    """Parse a classifier response into concerns.

    Anything that is not a JSON object of a known shape means "no concern".

    Args:
        raw: Raw model output (may wrap the JSON in prose or code fences)
        source_url: Document URL attached to every concern

    Returns:
        Valid concerns (possibly empty)
    """
    if not raw:
        return []

    parsed = first_json_object(raw)
    if parsed is None:
        logger.debug("No JSON object in classifier response")
        return []

    if not isinstance(parsed, dict) or parsed.get('is_concern') is False:
        return []

    if 'concerns' in parsed:
        records = parsed['concerns']
        if not isinstance(records, list):
            logger.debug("Classifier response has a non-list 'concerns' field")
            return []
    else:
        records = [parsed]

    concerns = []
    for record in records:
        concern = concern_from_dict(record, source_url)
        if concern is not None:
            concerns.append(concern)
    return concerns


def deduplicate_concerns(concerns: List[Concern]) -> List[Concern]:
    """Drop repeated (description, location) pairs, keeping the highest severity.

    The first occurrence keeps its position in the output.
    """
    unique: List[Concern] = []
    index_by_key: Dict[tuple, int] = {}

    for concern in concerns:
        key = (concern.description.lower().strip(), concern.location.lower().strip())
        existing = index_by_key.get(key)
        if existing is None:
            index_by_key[key] = len(unique)
            unique.append(concern)
        elif SEVERITY_ORDER[concern.severity] > SEVERITY_ORDER[unique[existing].severity]:
            unique[existing] = concern

    return unique


class ConcernClassifier:
    """Interface of a classification provider."""

    name = 'classifier'

    def classify(self, text: str, municipality: str,
                 source_url: Optional[str] = None) -> List[Concern]:
        """Return the concerns found in ``text`` ([] for none).

        Raises:
            ClassificationError: If the provider could not be reached or refused
        """
        raise NotImplementedError

    def summarize(self, municipality: str, concerns: List[Concern]) -> str:
        """Return a short prose summary of a municipality's concerns.

        Raises:
            ClassificationError: If the provider could not be reached or returned nothing
        """
        raise NotImplementedError


class OpenAIClassifier(ConcernClassifier):
    """Classify chunks with an OpenAI chat model in JSON mode."""

    def __init__(self, client, model: str = "gpt-4o-mini", temperature: float = 0.0):
        self.client = client
        self.model = model
        self.temperature = temperature
        self.name = f"openai:{model}"

    def classify(self, text: str, municipality: str,
                 source_url: Optional[str] = None) -> List[Concern]:
        if len(text) > MAX_LLM_TEXT_LENGTH:
            text = text[:MAX_LLM_TEXT_LENGTH]

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(municipality, text)},
                ],
                response_format={"type": "json_object"},
                temperature=self.temperature,
            )
            content = response.choices[0].message.content
        except Exception as e:
            raise ClassificationError(self.name, e) from e

        return parse_concerns(content, source_url)

    def summarize(self, municipality: str, concerns: List[Concern]) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                    {"role": "user", "content": build_summary_prompt(municipality, concerns)},
                ],
                temperature=self.temperature,
            )
            content = response.choices[0].message.content
        except Exception as e:
            raise ClassificationError(self.name, e) from e

        if not content or not content.strip():
            raise ClassificationError(self.name, "empty summary")
        return content.strip()


class ClassifierChain(ConcernClassifier):
    """Try providers in order; the first one that answers wins."""

    name = 'chain'

    def __init__(self, classifiers: Sequence[ConcernClassifier]):
        self.classifiers = list(classifiers)

    def classify(self, text: str, municipality: str,
                 source_url: Optional[str] = None) -> List[Concern]:
        for classifier in self.classifiers:
            try:
                return classifier.classify(text, municipality, source_url)
            except ClassificationError as e:
                logger.warning(f"{e}; trying next provider")
        if self.classifiers:
            logger.error("All classification providers failed; treating chunk as no concern")
        return []

    def summarize(self, municipality: str, concerns: List[Concern]) -> str:
        for classifier in self.classifiers:
            try:
                return classifier.summarize(municipality, concerns)
            except ClassificationError as e:
                logger.warning(f"{e}; trying next provider")
        if self.classifiers:
            logger.error(f"All providers failed to summarize {municipality}; using fallback summary")
        return fallback_summary(municipality, concerns)


def build_classifier_chain(config: RunConfig, client=None) -> ClassifierChain:
    """Create one OpenAI client for the run and a classifier per configured model.

    Args:
        config: Run configuration (api key and model list)
        client: Pre-built OpenAI-compatible client (tests)
    """
    if client is None:
        from openai import OpenAI
        client = OpenAI(api_key=config.openai_api_key)

    return ClassifierChain([OpenAIClassifier(client, model) for model in config.classifier_models])


class ConcernAnalyzer:
    """Run every chunk of a municipality through the classifier."""

    def __init__(self, classifier: ConcernClassifier, delay: float = 1.0):
        self.classifier = classifier
        self.delay = delay

    def analyze(self, municipality: str, chunks: List[TextChunk]) -> List[Concern]:
        """Classify chunks one at a time and deduplicate the concerns found.

        Args:
            municipality: Municipality name given to the model as context
            chunks: Chunks to classify

        Returns:
            Unique concerns
        """
        logger.info(f"Analyzing {len(chunks)} chunks for {municipality}...")
        all_concerns: List[Concern] = []

        for i, chunk in enumerate(chunks, start=1):
            if i > 1 and self.delay > 0:
                time.sleep(self.delay)

            concerns = self.classifier.classify(chunk.text, municipality, chunk.source_url)
            if concerns:
                logger.info(
                    f"Found {len(concerns)} concerns in chunk {chunk.chunk_index}/{chunk.total_chunks} "
                    f"of {chunk.title}"
                )
                all_concerns.extend(concerns)

        unique = deduplicate_concerns(all_concerns)
        logger.info(f"Total unique concerns for {municipality}: {len(unique)}")
        return unique

    def summarize(self, municipality: str, concerns: List[Concern]) -> str:
        """Summarize a municipality's concerns; no model call when there are none."""
        if not concerns:
            return fallback_summary(municipality, concerns)

        if self.delay > 0:
            time.sleep(self.delay)
        return self.classifier.summarize(municipality, concerns)
