# -*- coding: utf-8 -*-
"""
Text analysis helper tests
"""
import numpy as np
import pytest

from multiscale_rag.utils.text_analysis import (
    adjacent_similarities,
    clause_count,
    cosine,
    estimate_tokens,
    extract_keywords,
    jaccard,
    split_paragraphs,
    split_sentences,
    truncate_to_tokens,
    vocabulary_diversity,
    word_overlap_ratio,
)


class TestTokens:
    """Token estimation and truncation"""

    def test_estimate_tokens(self):
        assert estimate_tokens('') == 0
        assert estimate_tokens('   ') == 0
        # 6 words -> ceil(6 * 1.33)
        assert estimate_tokens("Net asset value is computed daily.") == 8
        assert estimate_tokens("one") == 2

    def test_truncate_keeps_head_or_tail(self):
        text = ' '.join(f"w{i}" for i in range(40))

        head = truncate_to_tokens(text, 10)
        tail = truncate_to_tokens(text, 10, from_end=True)

        # 10 tokens -> 7 words
        assert head.split() == [f"w{i}" for i in range(7)]
        assert tail.split() == [f"w{i}" for i in range(33, 40)]
        assert text.endswith(tail)

    def test_truncate_short_text_unchanged(self):
        assert truncate_to_tokens("short text", 50) == "short text"
        assert truncate_to_tokens("short text", 0) == ''


class TestSplitting:
    """Paragraph and sentence splitting"""

    def test_split_paragraphs(self):
        text = "First block.\n\n\nSecond block.\n   \nThird."
        assert split_paragraphs(text) == ["First block.", "Second block.", "Third."]

    def test_sentences_never_cross_paragraphs(self):
        text = "The fee is charged monthly\n\nInvestors may redeem daily. Settlement takes two days."
        sentences = split_sentences(text)

        assert sentences[0] == "The fee is charged monthly"
        assert sentences[1:] == ["Investors may redeem daily.", "Settlement takes two days."]

    def test_line_breaks_inside_paragraph_are_spaces(self):
        assert split_sentences("The fund\ninvests globally.") == ["The fund invests globally."]

    def test_punctuation_only_is_dropped(self):
        assert split_sentences("...\n\n---") == []


class TestKeywords:
    """TF keyword extraction"""

    def test_frequency_order_and_stop_words(self):
        text = "Fund risk and fund return. The fund manages risk."
        keywords = extract_keywords(text, top_n=3)

        assert keywords == ['fund', 'risk', 'manages']
        assert 'the' not in keywords

    def test_domain_boost_breaks_ties(self):
        text = "liquidity volatility"
        assert extract_keywords(text, top_n=1) == ['liquidity']
        assert extract_keywords(text, top_n=1, domain_terms={'volatility'}, domain_boost=1.2) == ['volatility']

    def test_no_keywords(self):
        assert extract_keywords('') == []
        assert extract_keywords('the and of') == []


class TestSimilarity:
    """Overlap and vector similarity helpers"""

    def test_jaccard(self):
        assert jaccard({'a', 'b'}, {'b', 'c'}) == pytest.approx(1 / 3)
        assert jaccard(set(), {'a'}) == 0.0

    def test_word_overlap_ratio(self):
        assert word_overlap_ratio("fee schedule", "the fee schedule applies") == 1.0
        assert word_overlap_ratio("fee custody", "fee only") == 0.5

    def test_cosine_handles_zero_vectors(self):
        assert cosine(np.zeros(3), np.ones(3)) == 0.0
        assert cosine(np.array([1.0, 0.0]), np.array([2.0, 0.0])) == pytest.approx(1.0)

    def test_adjacent_similarities(self):
        sims = adjacent_similarities(np.array([[1.0, 0.0], [1.0, 0.0], [0.0, 1.0]]))
        assert sims == pytest.approx([1.0, 0.0])
        assert adjacent_similarities(np.array([[1.0, 0.0]])) == []

    def test_complexity_signals(self):
        assert vocabulary_diversity("fund fund fund fund") == 0.25
        assert clause_count('') == 0
        assert clause_count("Fees accrue daily, and are paid monthly.") == 3
