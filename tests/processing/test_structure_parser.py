# -*- coding: utf-8 -*-
"""
Section detection tests
"""
import pytest

from multiscale_rag.processing.chunks.structure_parser import (
    clean_heading,
    heading_level,
    is_heading,
    parse_sections,
)
from multiscale_rag.utils.dataclasses import Document, StructuralHint


class TestHeadingDetection:
    """Line-level heading patterns"""

    @pytest.mark.parametrize('line', [
        '# Overview',
        '### Fee Table',
        'Section 4 Redemptions',
        'Article 12 Governing Law',
        '2.1 Management Fees',
        'PRINCIPAL RISKS',
    ])
    def test_recognized_headings(self, line):
        assert is_heading(line)

    @pytest.mark.parametrize('line', [
        '',
        'The fund charges a management fee.',
        'this line is ordinary lowercase prose without punctuation',
        '2. The fund may invest in derivatives when the adviser believes that doing so will '
        'reduce risk across the whole portfolio.',
    ])
    def test_prose_is_not_a_heading(self, line):
        assert not is_heading(line)

    def test_heading_levels(self):
        assert heading_level('## Fees') == 2
        assert heading_level('3.2.1 Custody') == 3
        assert heading_level('PRINCIPAL RISKS') == 1

    def test_clean_heading_strips_markers(self):
        assert clean_heading('##  Fee Table ') == 'Fee Table'


class TestParseSections:
    """Document-level section splitting"""

    def test_markdown_sections_with_preamble(self):
        text = "Intro paragraph here.\n\n# Fees\n\nFee text.\n\n## 2.1 Custody\n\nCustody text."
        sections = parse_sections(Document(document_id='d', version=1, raw_text=text))

        assert [s.heading for s in sections] == [None, 'Fees', '2.1 Custody']
        assert [s.level for s in sections] == [0, 1, 2]
        assert sections[2].number == '2.1'
        assert sections[1].body == 'Fee text.'

    def test_container_heading_without_body_is_dropped(self):
        text = "# Fund\n\n## Fees\n\nFee text."
        sections = parse_sections(Document(document_id='d', version=1, raw_text=text))
        assert [s.heading for s in sections] == ['Fees']

    def test_stray_heading_text_is_kept(self):
        text = "# Fees\n\nFee text.\n\n# Empty\n\n# Risks\n\nRisk text."
        sections = parse_sections(Document(document_id='d', version=1, raw_text=text))

        assert [s.heading for s in sections] == ['Fees', 'Risks']
        assert sections[0].body == 'Fee text.\n\nEmpty'

    def test_leading_stray_heading_becomes_preamble(self):
        text = "# Empty\n\n# Fees\n\nFee text."
        sections = parse_sections(Document(document_id='d', version=1, raw_text=text))

        assert [s.heading for s in sections] == [None, 'Fees']
        assert sections[0].body == 'Empty'

    def test_numbered_list_stays_in_body(self):
        text = ("# Redemption Process\n\nInvestors follow these steps to redeem shares in the fund.\n\n"
                "1. Log in to the investor portal\n2. Select the redemption form\n"
                "3. Submit the signed request\n\nSettlement happens within two business days.")
        sections = parse_sections(Document(document_id='d', version=1, raw_text=text))

        assert [s.heading for s in sections] == ['Redemption Process']
        for phrase in ('investor portal', 'redemption form', 'signed request', 'two business days'):
            assert phrase in sections[0].body

    def test_single_numbered_line_is_still_a_heading(self):
        text = "2.1 Custody Fees\n\nThe custodian bills monthly."
        sections = parse_sections(Document(document_id='d', version=1, raw_text=text))
        assert [s.heading for s in sections] == ['2.1 Custody Fees']

    def test_hints_take_precedence_over_patterns(self):
        text = "# Ignored Heading\n\nAlpha text. Beta text."
        offset = text.index('Beta')
        document = Document(
            document_id='d', version=1, raw_text=text,
            structural_hints=(StructuralHint(kind='heading', text='Beta', offset=offset),),
        )

        sections = parse_sections(document)

        assert [s.heading for s in sections] == [None, 'Beta']
        assert sections[1].body == 'text.'

    def test_page_hints_attach_to_sections(self):
        text = "# One\n\nFirst page text.\n\n# Two\n\nSecond page text."
        document = Document(
            document_id='d', version=1, raw_text=text,
            structural_hints=(
                StructuralHint(kind='page', text='1', offset=0),
                StructuralHint(kind='page', text='2', offset=text.index('# Two')),
            ),
        )

        sections = parse_sections(document)

        assert [s.page for s in sections] == [1, 2]

    def test_empty_text(self):
        assert parse_sections(Document(document_id='d', version=1, raw_text='')) == []
