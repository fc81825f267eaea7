# -*- coding: utf-8 -*-
"""
Query analysis and retrieval strategy selection.

Classifies a query with regex patterns from config.retrieval_config and picks
the retrieval strategy:

    prior conversation turns            -> CONTEXTUAL
    quoted phrases, codes, identifiers  -> HYBRID
    comparative / structure-spanning    -> MULTI_SCALE
    ambiguous referents                 -> HYBRID
    factual or simple                   -> VECTOR_ONLY
    anything else                       -> HYBRID

Health-check style queries ("ping", "system status") are marked as system
queries and bypass retrieval entirely.

Examples:
    analyzer = QueryAnalyzer()
    analysis = analyzer.analyze("Compare fees across sections 2 and 4")
    analysis.query_type          # QueryType.COMPARATIVE
    analyzer.select_strategy(analysis)   # RetrievalStrategy.MULTI_SCALE
"""
# Standard library
import logging
import re
from typing import List, Optional, Sequence

# Foundation
from multiscale_rag.utils.dataclasses import QueryAnalysis, QueryComplexity, QueryType
from multiscale_rag.utils.text_analysis import clause_count, estimate_tokens, extract_keywords, words

# Config
from multiscale_rag.config.retrieval_config import (
    AMBIGUOUS_REFERENTS,
    EXACT_TERM_PATTERNS,
    MULTI_FACT_PATTERNS,
    QUERY_PATTERNS,
    STRUCTURE_SPANNING_PATTERNS,
    SYSTEM_QUERY_KEYWORDS,
    RetrievalStrategy,
)

logger = logging.getLogger(__name__)

SIMPLE_MAX_TOKENS = 12
COMPLEX_MIN_TOKENS = 30
COMPLEX_MIN_CLAUSES = 3
MAX_KEY_TERMS = 10

# More specific intents first; "what is the difference" is comparative
TYPE_PRECEDENCE = [
    QueryType.COMPARATIVE,
    QueryType.TROUBLESHOOTING,
    QueryType.PROCEDURAL,
    QueryType.FACTUAL,
]


def _compile(patterns: Sequence[str]) -> List[re.Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


class QueryAnalyzer:
    """Rule-based query classifier."""

    def __init__(self):
        self.type_patterns = {
            query_type: _compile(QUERY_PATTERNS.get(query_type.value, []))
            for query_type in TYPE_PRECEDENCE
        }
        self.structure_patterns = _compile(STRUCTURE_SPANNING_PATTERNS)
        self.multi_fact_patterns = _compile(MULTI_FACT_PATTERNS)
        # Case-sensitive: codes are upper case
        self.exact_patterns = [re.compile(p) for p in EXACT_TERM_PATTERNS]
        self.system_patterns = _compile([rf'\b{re.escape(k)}\b' for k in SYSTEM_QUERY_KEYWORDS])
        self.single_referents = {r for r in AMBIGUOUS_REFERENTS if ' ' not in r}
        self.phrase_referents = [r for r in AMBIGUOUS_REFERENTS if ' ' in r]

    def analyze(self, query: str, context: Optional[Sequence[str]] = None) -> QueryAnalysis:
        """
        Classify a query.

        Args:
            query: Query text
            context: Prior conversation turns, oldest first
        """
        text = query.strip()
        lowered = text.lower()
        has_conversation = bool(context and any(turn.strip() for turn in context))

        token_count = estimate_tokens(text)
        clauses = clause_count(text)
        if token_count <= SIMPLE_MAX_TOKENS and clauses <= 1:
            complexity = QueryComplexity.SIMPLE
        elif token_count > COMPLEX_MIN_TOKENS or clauses >= COMPLEX_MIN_CLAUSES:
            complexity = QueryComplexity.COMPLEX
        else:
            complexity = QueryComplexity.STANDARD

        query_type = QueryType.GENERAL
        for candidate in TYPE_PRECEDENCE:
            if any(p.search(lowered) for p in self.type_patterns[candidate]):
                query_type = candidate
                break

        exact_terms = []
        for pattern in self.exact_patterns:
            for match in pattern.findall(text):
                term = match.strip('"\'')
                if term and term not in exact_terms:
                    exact_terms.append(term)

        key_terms = extract_keywords(text, top_n=MAX_KEY_TERMS)
        if not key_terms:
            key_terms = [w for w in words(text) if len(w) > 2][:MAX_KEY_TERMS]

        query_words = set(words(text))
        has_referent = bool(query_words & self.single_referents) or any(
            phrase in lowered for phrase in self.phrase_referents
        )
        # A referent is resolvable when prior turns supply an antecedent
        is_ambiguous = (has_referent and not has_conversation) or not key_terms

        spans_structure = query_type == QueryType.COMPARATIVE or any(
            p.search(lowered) for p in self.structure_patterns
        )

        analysis = QueryAnalysis(
            query=text,
            query_type=query_type,
            complexity=complexity,
            token_count=token_count,
            clause_count=clauses,
            is_ambiguous=is_ambiguous,
            requires_exact_terms=bool(exact_terms),
            spans_structure=spans_structure,
            has_conversation=has_conversation,
            implies_multiple_facts=any(p.search(lowered) for p in self.multi_fact_patterns),
            is_system_query=self.is_system_query(text),
            key_terms=key_terms,
            exact_terms=exact_terms,
        )
        logger.debug(
            f"Query analyzed: type={query_type.value}, complexity={complexity.value}, "
            f"ambiguous={is_ambiguous}, exact={bool(exact_terms)}"
        )
        return analysis

    def is_system_query(self, query: str) -> bool:
        """Health-check and status probes that should not hit the corpus."""
        lowered = query.lower()
        return any(p.search(lowered) for p in self.system_patterns)

    @staticmethod
    def select_strategy(analysis: QueryAnalysis) -> RetrievalStrategy:
        if analysis.has_conversation:
            return RetrievalStrategy.CONTEXTUAL
        if analysis.requires_exact_terms:
            return RetrievalStrategy.HYBRID
        if analysis.spans_structure:
            return RetrievalStrategy.MULTI_SCALE
        if analysis.is_ambiguous:
            return RetrievalStrategy.HYBRID
        if analysis.query_type == QueryType.FACTUAL or analysis.complexity == QueryComplexity.SIMPLE:
            return RetrievalStrategy.VECTOR_ONLY
        return RetrievalStrategy.HYBRID
