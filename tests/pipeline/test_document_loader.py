# -*- coding: utf-8 -*-
"""
Document loader tests
"""
import json

import pytest

from multiscale_rag.pipeline.document_loader import load_documents


class TestLoadDocuments:
    """Text, markdown, JSON and directory inputs"""

    def test_text_and_markdown_files(self, tmp_path):
        (tmp_path / 'fees.txt').write_text("Management fee accrues daily.", encoding='utf-8')
        (tmp_path / 'risks.md').write_text("# Risks\n\nLiquidity risk.", encoding='utf-8')

        documents = load_documents([tmp_path / 'fees.txt', tmp_path / 'risks.md'], version=2)

        assert [d.document_id for d in documents] == ['fees', 'risks']
        assert all(d.version == 2 for d in documents)
        assert documents[1].raw_text.startswith('# Risks')
        assert documents[0].metadata['source_path'].endswith('fees.txt')

    def test_json_records_with_hints(self, tmp_path):
        records = [
            {'id': 'fund_a', 'version': 3, 'text': "Fees\nThe fee accrues daily.",
             'structural_hints': [{'kind': 'heading', 'text': 'Fees', 'offset': 0, 'level': 2}]},
            {'id': 'fund_b', 'version': 1, 'text': "Another prospectus."},
        ]
        (tmp_path / 'corpus.json').write_text(json.dumps(records), encoding='utf-8')

        documents = load_documents([tmp_path / 'corpus.json'])

        assert [(d.document_id, d.version) for d in documents] == [('fund_a', 3), ('fund_b', 1)]
        hint = documents[0].structural_hints[0]
        assert (hint.kind, hint.text, hint.offset, hint.level) == ('heading', 'Fees', 0, 2)
        assert documents[1].structural_hints == ()

    def test_single_json_object(self, tmp_path):
        (tmp_path / 'one.json').write_text(json.dumps({'id': 'solo', 'version': 1, 'text': "Text."}),
                                           encoding='utf-8')
        assert [d.document_id for d in load_documents([tmp_path / 'one.json'])] == ['solo']

    def test_directory_sorted_and_filtered(self, tmp_path):
        (tmp_path / 'b.md').write_text("Second.", encoding='utf-8')
        (tmp_path / 'a.txt').write_text("First.", encoding='utf-8')
        (tmp_path / 'image.png').write_bytes(b'\x89PNG')

        documents = load_documents([tmp_path])

        assert [d.document_id for d in documents] == ['a', 'b']

    def test_missing_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_documents([tmp_path / 'absent.txt'])
