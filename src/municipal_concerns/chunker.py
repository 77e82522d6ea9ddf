"""Community-signal filtering and sentence-aligned chunking of documents.

Documents go through three hard filters (community signal, procedural
boilerplate, legal/financial/ceremonial content), are narrowed to their
high-signal paragraphs, then split into chunks of at most ``max_chars``
characters. Per municipality only the chunks with the highest keyword density
are kept, which bounds the number of classifier calls.
"""

import logging
import re
from typing import Iterable, List, Optional

from .config import RunConfig
from .models import ExtractedDocument, TextChunk
from .utils import normalize_whitespace

logger = logging.getLogger(__name__)

MAX_CHUNK_CHARS = 2400  # ~800 tokens
MIN_CHUNK_CHARS = 100
MIN_CONTENT_CHARS = 300
MAX_CHUNKS_PER_MUNICIPALITY = 30

MIN_SIGNAL_SENTENCES = 2
MIN_SENTENCE_CHARS = 10
MIN_PARAGRAPH_CHARS = 50
PROCEDURAL_MATCH_CHARS = 50
MAX_PROCEDURAL_SHARE = 0.3

COMMUNITY_SIGNAL_KEYWORDS = [
    'residents',
    'community',
    'neighbourhood',
    'neighborhood',
    'public concerns',
    'complaints',
    'feedback',
    'issues',
    'citizens',
    'public input',
    'stakeholder',
    'engagement',
]

DENSITY_KEYWORDS = COMMUNITY_SIGNAL_KEYWORDS + ['lack', 'absence', 'problem', 'concern', 'issue']

PROCEDURAL_PATTERNS = [re.compile(p, re.IGNORECASE) for p in (
    r'attendance.*?roll',
    r'present.*?vote',
    r'motion.*?carried',
    r'seconded.*?motion',
    r'unanimously.*?approved',
    r'roll.*?call',
    r'voting.*?record',
    r'ayes.*?nays',
    r'call.*?question',
    r'vote.*?result',
    r'carried.*?unanimously',
    r'resolved.*?that',
)]

LEGAL_FINANCIAL_CEREMONIAL_PATTERNS = [re.compile(p, re.IGNORECASE) for p in (
    r'bylaw.*amendment',
    r'municipal.*code',
    r'zoning.*bylaw',
    r'financial.*statement',
    r'budget.*allocation',
    r'tax.*levy',
    r'ceremonial.*opening',
    r'opening.*prayers',
    r'national.*anthem',
    r'oath.*office',
    r'swearing.*ceremony',
    r'legal.*opinion',
    r'contract.*award',
    r'tender.*process',
)]

HIGH_SIGNAL_PATTERNS = [re.compile(p, re.IGNORECASE) for p in (
    r'lack.*service',
    r'absence.*service',
    r'public.*complaint',
    r'resident.*feedback',
    r'infrastructure.*problem',
    r'transit.*issue',
    r'housing.*concern',
    r'healthcare.*problem',
    r'safety.*issue',
    r'utility.*problem',
    r'community.*engagement',
    r'stakeholder.*input',
    r'public.*consultation',
    r'community.*meeting',
    r'resident.*meeting',
    r'neighbourhood.*concern',
    r'neighborhood.*concern',
)]

LOW_SIGNAL_PATTERNS = [re.compile(p, re.IGNORECASE) for p in (
    # Procedural boilerplate
    r'speaker.*?roll.*?call',
    r'motion.*?seconded.*?carried',
    r'resolved.*?unanimously',
    r'ayes.*?nays.*?motion',
    r'vote.*?recorded.*?follows',
    # Disclaimers and legal notices
    r'disclaimer.*?liability',
    r'terms.*?conditions',
    r'privacy.*?policy',
    r'copyright.*?notice',
    # Meeting formalities
    r'meeting.*?called.*?order',
    r'adjournment.*?meeting',
)]

SENTENCE_SPLIT = re.compile(r'[.!?]+')
PARAGRAPH_SPLIT = re.compile(r'\n\s*\n')

REJECT_TOO_SHORT = 'too_short'
REJECT_NO_COMMUNITY_SIGNAL = 'insufficient_community_signal'
REJECT_PROCEDURAL = 'procedural_boilerplate'
REJECT_LEGAL_FINANCIAL_CEREMONIAL = 'legal_financial_ceremonial'
REJECT_INSUFFICIENT_CONTENT = 'insufficient_content_after_filtering'


def split_sentences(text: str) -> List[str]:
    """Split on runs of sentence terminators; returns stripped, non-empty pieces."""
    return [s.strip() for s in SENTENCE_SPLIT.split(text) if s.strip()]


def has_community_signal(text: str, min_sentences: int = MIN_SIGNAL_SENTENCES) -> bool:
    """At least ``min_sentences`` sentences mention residents, complaints, feedback, etc."""
    signal_sentences = 0
    for sentence in SENTENCE_SPLIT.split(text):
        if len(sentence.strip()) <= MIN_SENTENCE_CHARS:
            continue
        lowered = sentence.lower()
        if any(keyword in lowered for keyword in COMMUNITY_SIGNAL_KEYWORDS):
            signal_sentences += 1
            if signal_sentences >= min_sentences:
                return True
    return False


def procedural_match_count(text: str) -> int:
    return sum(len(pattern.findall(text)) for pattern in PROCEDURAL_PATTERNS)


def is_procedural_boilerplate(text: str) -> bool:
    """Estimated procedural coverage (50 chars per match) exceeds 30% of the text."""
    if not text:
        return False
    boilerplate_chars = procedural_match_count(text) * PROCEDURAL_MATCH_CHARS
    return boilerplate_chars / len(text) > MAX_PROCEDURAL_SHARE


def is_legal_financial_ceremonial(text: str) -> bool:
    return any(pattern.search(text) for pattern in LEGAL_FINANCIAL_CEREMONIAL_PATTERNS)


def filter_high_signal_paragraphs(text: str) -> str:
    """Keep only blank-line-delimited paragraphs that mention a high-signal phrase."""
    paragraphs = [p for p in PARAGRAPH_SPLIT.split(text) if len(p.strip()) > MIN_PARAGRAPH_CHARS]
    kept = [p for p in paragraphs if any(pattern.search(p) for pattern in HIGH_SIGNAL_PATTERNS)]
    return '\n\n'.join(kept)


def remove_low_signal_content(text: str) -> str:
    """Delete known boilerplate phrases and collapse whitespace."""
    for pattern in LOW_SIGNAL_PATTERNS:
        text = pattern.sub('', text)
    return normalize_whitespace(text)


def document_rejection_reason(text: str, min_chars: int = MIN_CONTENT_CHARS) -> Optional[str]:
    """Reason code for dropping a whole document before narrowing, or None."""
    if len(text) < min_chars:
        return REJECT_TOO_SHORT
    if not has_community_signal(text):
        return REJECT_NO_COMMUNITY_SIGNAL
    if is_procedural_boilerplate(text):
        return REJECT_PROCEDURAL
    if is_legal_financial_ceremonial(text):
        return REJECT_LEGAL_FINANCIAL_CEREMONIAL
    return None


def narrow_content(text: str, min_chars: int = MIN_CONTENT_CHARS) -> Optional[str]:
    """High-signal paragraphs, else the whole text minus boilerplate phrases.

    Returns None when less than ``min_chars`` characters survive either way.
    """
    narrowed = filter_high_signal_paragraphs(text)
    if not narrowed or len(narrowed) < min_chars:
        narrowed = remove_low_signal_content(text)
    if len(narrowed) < min_chars:
        return None
    return narrowed


def _split_long_sentence(sentence: str, max_chars: int) -> List[str]:
    """Break a sentence that cannot fit in one chunk on word boundaries."""
    limit = max(1, max_chars - 1)  # room for the closing period
    pieces = []
    current = ''
    for word in sentence.split():
        while len(word) > limit:
            if current:
                pieces.append(current)
                current = ''
            pieces.append(word[:limit])
            word = word[limit:]
        if not word:
            continue
        candidate = f"{current} {word}" if current else word
        if len(candidate) <= limit:
            current = candidate
        else:
            pieces.append(current)
            current = word
    if current:
        pieces.append(current)
    return pieces


def split_into_chunks(text: str, max_chars: int = MAX_CHUNK_CHARS,
                      min_chars: int = MIN_CHUNK_CHARS) -> List[str]:
    """Accumulate sentences into chunks of at most ``max_chars`` characters.

    Sentences are re-terminated with a period. Chunks shorter than
    ``min_chars`` are discarded.
    """
    chunks = []
    current = ''

    for sentence in split_sentences(text):
        if len(sentence) + 1 <= max_chars:
            pieces = [sentence]
        else:
            pieces = _split_long_sentence(sentence, max_chars)

        for piece in pieces:
            candidate = f"{current} {piece}." if current else f"{piece}."
            if len(candidate) <= max_chars:
                current = candidate
            else:
                if current:
                    chunks.append(current.strip())
                current = f"{piece}."

    if current:
        chunks.append(current.strip())

    return [chunk for chunk in chunks if len(chunk) >= min_chars]


def keyword_density(text: str) -> float:
    """Fraction of tokens containing a community-signal keyword."""
    words = text.lower().split()
    if not words:
        return 0.0
    hits = sum(1 for word in words if any(keyword in word for keyword in DENSITY_KEYWORDS))
    return hits / len(words)


def cap_chunks(chunks: List[TextChunk], limit: int = MAX_CHUNKS_PER_MUNICIPALITY) -> List[TextChunk]:
    """Keep the ``limit`` chunks with the highest keyword density.

    Ties keep their original order. Chunk records are returned unchanged, so
    every survivor still carries its document's chunk_index/total_chunks.
    """
    if len(chunks) <= limit:
        return chunks
    ranked = sorted(chunks, key=lambda chunk: keyword_density(chunk.text), reverse=True)
    logger.info(f"Limited {len(chunks)} chunks to top {limit} by keyword density")
    return ranked[:limit]


def chunk_document(document: ExtractedDocument, municipality: str,
                   max_chars: int = MAX_CHUNK_CHARS, min_chars: int = MIN_CHUNK_CHARS,
                   min_content_chars: int = MIN_CONTENT_CHARS) -> List[TextChunk]:
    """Filter, narrow and split one document. Returns [] when it is rejected."""
    text = document.raw_text
    reason = document_rejection_reason(text, min_content_chars)
    if reason is None:
        text = narrow_content(text, min_content_chars)
        if text is None:
            reason = REJECT_INSUFFICIENT_CONTENT

    if reason is not None:
        logger.info(f'Filtering out document "{document.title}": {reason}')
        return []

    pieces = split_into_chunks(text, max_chars, min_chars)
    return [
        TextChunk(
            municipality=municipality,
            source_url=document.source_url,
            title=document.title,
            chunk_index=i,
            total_chunks=len(pieces),
            text=piece,
        )
        for i, piece in enumerate(pieces, start=1)
    ]


def chunk_documents(municipality: str, documents: Iterable[ExtractedDocument],
                    config: Optional[RunConfig] = None) -> List[TextChunk]:
    """Chunk all documents of one municipality and cap the total.

    Args:
        municipality: Municipality name stamped on every chunk
        documents: Extracted documents
        config: Run configuration (module defaults when omitted)

    Returns:
        At most ``max_chunks_per_municipality`` chunks
    """
    if config is not None:
        max_chars = config.max_chunk_chars
        min_chars = config.min_chunk_chars
        min_content = config.min_text_chars
        limit = config.max_chunks_per_municipality
    else:
        max_chars, min_chars = MAX_CHUNK_CHARS, MIN_CHUNK_CHARS
        min_content, limit = MIN_CONTENT_CHARS, MAX_CHUNKS_PER_MUNICIPALITY

    all_chunks: List[TextChunk] = []
    for document in documents:
        all_chunks.extend(chunk_document(document, municipality, max_chars, min_chars, min_content))

    return cap_chunks(all_chunks, limit)
