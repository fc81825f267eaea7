# -*- coding: utf-8 -*-
"""
Text analysis helpers shared by chunking, embedding and retrieval

Token estimation, paragraph/sentence splitting (NLTK Punkt), deterministic
TF-based keyword extraction (scikit-learn CountVectorizer with English stop
words), lexical overlap measures and the complexity signals used for
adaptive chunk sizing.

Token counts are estimated as ceil(words * 1.33) rather than with a model
tokenizer so chunk bounds are stable across embedding models and need no
downloads.

Examples:
    from multiscale_rag.utils.text_analysis import estimate_tokens, extract_keywords

    estimate_tokens("Net asset value is computed daily.")      # 8
    extract_keywords("Fund risk and fund return ...", top_n=3,
                     domain_terms={'fund', 'risk'})             # ['fund', 'risk', 'return']
"""
# Standard library
import logging
import math
import re
from typing import Iterable, List, Optional, Sequence, Set

# Third-party
import nltk
import numpy as np
from nltk.tokenize.punkt import PunktSentenceTokenizer
from sklearn.feature_extraction.text import CountVectorizer
from sklearn.metrics.pairwise import cosine_similarity

# Config
from multiscale_rag.config.ingestion_config import CHUNKING_CONFIG

logger = logging.getLogger(__name__)

TOKENS_PER_WORD = CHUNKING_CONFIG.get('tokens_per_word', 1.33)

WORD_PATTERN = re.compile(r"[A-Za-z0-9]+(?:['\-][A-Za-z0-9]+)*")
PARAGRAPH_SPLIT = re.compile(r'\n\s*\n')
CLAUSE_MARKERS = re.compile(
    r"[,;:]|\b(?:and|or|but|because|which|while|whereas|although|if|when|then)\b",
    re.IGNORECASE
)
KEYWORD_TOKEN_PATTERN = r"(?u)\b[a-zA-Z][a-zA-Z0-9\-]{2,}\b"

_sentence_tokenizer = None


# ============================================================================
# TOKENS & WORDS
# ============================================================================

def words(text: str) -> List[str]:
    """Lowercased word tokens."""
    return [w.lower() for w in WORD_PATTERN.findall(text or '')]


def estimate_tokens(text: str) -> int:
    """Approximate model tokens as ceil(word_count * 1.33)."""
    count = len(WORD_PATTERN.findall(text or ''))
    if count == 0:
        return 0
    return int(math.ceil(count * TOKENS_PER_WORD))


def words_for_tokens(max_tokens: int) -> int:
    """Number of words that fit in a token budget."""
    return max(0, int(max_tokens / TOKENS_PER_WORD))


def truncate_to_tokens(text: str, max_tokens: int, from_end: bool = False) -> str:
    """
    Cut text to roughly ``max_tokens`` on word boundaries.

    Args:
        text: Source text
        max_tokens: Token budget
        from_end: Keep the tail instead of the head
    """
    parts = text.split()
    limit = words_for_tokens(max_tokens)
    if len(parts) <= limit:
        return text
    if limit == 0:
        return ''
    kept = parts[-limit:] if from_end else parts[:limit]
    return ' '.join(kept)


# ============================================================================
# SENTENCES & PARAGRAPHS
# ============================================================================

def _get_sentence_tokenizer():
    """Trained Punkt model when installed, otherwise an untrained Punkt tokenizer."""
    global _sentence_tokenizer
    if _sentence_tokenizer is None:
        try:
            nltk.data.find('tokenizers/punkt_tab')
            _sentence_tokenizer = nltk.sent_tokenize
        except LookupError:
            logger.debug("NLTK punkt_tab not installed, using untrained PunktSentenceTokenizer")
            _sentence_tokenizer = PunktSentenceTokenizer().tokenize
    return _sentence_tokenizer


def split_paragraphs(text: str) -> List[str]:
    """Blank-line separated blocks, stripped, empties removed."""
    return [p.strip() for p in PARAGRAPH_SPLIT.split(text or '') if p.strip()]


def split_sentences(text: str) -> List[str]:
    """
    Split text into sentences without crossing paragraph or line-block boundaries.

    Single newlines inside a paragraph are treated as spaces; each blank-line
    separated block is tokenized on its own.
    """
    tokenize = _get_sentence_tokenizer()
    sentences = []
    for paragraph in split_paragraphs(text):
        flat = re.sub(r'\s+', ' ', paragraph)
        for sentence in tokenize(flat):
            sentence = sentence.strip()
            if sentence and WORD_PATTERN.search(sentence):
                sentences.append(sentence)
    return sentences


# ============================================================================
# KEYWORDS
# ============================================================================

def extract_keywords(
    text: str,
    top_n: int = 10,
    domain_terms: Optional[Iterable[str]] = None,
    domain_boost: float = 1.0,
) -> List[str]:
    """
    Top-N terms by term frequency, stop words removed.

    Domain terms have their frequency multiplied by ``domain_boost``. Ties are
    broken alphabetically so the output is deterministic.

    Args:
        text: Source text
        top_n: Number of terms to return
        domain_terms: Vocabulary that receives the boost
        domain_boost: Frequency multiplier for domain terms

    Returns:
        Lowercased terms, highest score first
    """
    if not text or not text.strip() or top_n <= 0:
        return []

    vectorizer = CountVectorizer(
        stop_words='english',
        token_pattern=KEYWORD_TOKEN_PATTERN,
        lowercase=True,
    )
    try:
        counts = vectorizer.fit_transform([text])
    except ValueError:
        # Only stop words / no qualifying tokens
        return []

    terms = vectorizer.get_feature_names_out()
    freqs = counts.toarray()[0].astype(float)

    boosted = set(t.lower() for t in (domain_terms or []))
    if boosted and domain_boost != 1.0:
        for i, term in enumerate(terms):
            if term in boosted:
                freqs[i] *= domain_boost

    order = sorted(range(len(terms)), key=lambda i: (-freqs[i], terms[i]))
    return [str(terms[i]) for i in order[:top_n]]


def tf_summary(text: str, top_n: int = 8) -> str:
    """Space-joined top TF terms, used as a cheap text summary."""
    return ' '.join(extract_keywords(text, top_n=top_n))


def find_domain_terms(text: str, domain_terms: Iterable[str]) -> List[str]:
    """Domain vocabulary entries present in text as whole words."""
    present = set(words(text))
    return sorted(t for t in domain_terms if t.lower() in present)


# ============================================================================
# OVERLAP & SIMILARITY
# ============================================================================

def long_words(text: str, min_length: int = 4) -> Set[str]:
    """Distinct words with at least ``min_length`` characters."""
    return {w for w in words(text) if len(w) >= min_length}


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    set_a, set_b = set(a), set(b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def word_overlap_ratio(inner: str, outer: str) -> float:
    """Share of ``inner``'s distinct words that also appear in ``outer``."""
    inner_words = set(words(inner))
    if not inner_words:
        return 0.0
    return len(inner_words & set(words(outer))) / len(inner_words)


def cosine(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two vectors, 0.0 when either is zero."""
    a = np.asarray(a, dtype=np.float32).reshape(1, -1)
    b = np.asarray(b, dtype=np.float32).reshape(1, -1)
    if not np.any(a) or not np.any(b):
        return 0.0
    return float(cosine_similarity(a, b)[0][0])


def adjacent_similarities(embeddings: np.ndarray) -> List[float]:
    """Cosine similarity of each row with the next one."""
    if embeddings is None or len(embeddings) < 2:
        return []
    return [
        float(cosine_similarity(embeddings[i:i + 1], embeddings[i + 1:i + 2])[0][0])
        for i in range(len(embeddings) - 1)
    ]


# ============================================================================
# COMPLEXITY SIGNALS
# ============================================================================

def vocabulary_diversity(text: str) -> float:
    """Type/token ratio over lowercased words."""
    tokens = words(text)
    if not tokens:
        return 0.0
    return len(set(tokens)) / len(tokens)


def average_sentence_length(sentences: Sequence[str]) -> float:
    """Mean words per sentence."""
    if not sentences:
        return 0.0
    return float(np.mean([len(words(s)) for s in sentences]))


def clause_count(text: str) -> int:
    """Rough clause count: one plus the number of clause separators."""
    if not text or not text.strip():
        return 0
    return 1 + len(CLAUSE_MARKERS.findall(text))
