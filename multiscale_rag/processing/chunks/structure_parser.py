# -*- coding: utf-8 -*-
"""
Section detection from structural hints and heading patterns

Splits a document's raw text into headed sections. Heading hints supplied by
the loader (character offsets into raw text) take precedence; without hints,
lines matching the configured heading patterns (markdown ``#``,
``Section 3``/``Article 12``, numbered ``2.1 Title``, short all-caps lines)
start a new section. Runs of consecutive numbered lines are list
items and stay in the body. Text before the first heading becomes an untitled
preamble section. A heading with no body of its own is kept as body text
unless it opens deeper sections. Page hints are carried along as the page a
section starts on.

References:
    config.ingestion_config.CHUNKING_CONFIG: heading_patterns
"""
# Standard library
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Set

# Foundation
from multiscale_rag.utils.dataclasses import Document, StructuralHint

# Config
from multiscale_rag.config.ingestion_config import CHUNKING_CONFIG

logger = logging.getLogger(__name__)

HEADING_PATTERNS = [
    re.compile(p) for p in CHUNKING_CONFIG.get('heading_patterns', [r'^#{1,6}\s+\S.*$'])
]
MARKDOWN_HEADING = re.compile(r'^(#{1,6})\s+')
NUMBERED_HEADING = re.compile(r'^(\d+(?:\.\d+)*)\.?\s+')
MAX_HEADING_WORDS = 14


@dataclass
class Section:
    """Headed block of document text."""
    heading: Optional[str]
    level: int
    body: str
    start_offset: int
    page: Optional[int] = None

    @property
    def number(self) -> Optional[str]:
        """Leading section number of the heading ("3.2"), if any."""
        if not self.heading:
            return None
        match = re.search(r'(\d+(?:\.\d+)*)', clean_heading(self.heading))
        return match.group(1) if match else None


def clean_heading(line: str) -> str:
    """Strip markdown markers and surrounding whitespace."""
    return MARKDOWN_HEADING.sub('', line.strip()).strip()


def is_heading(line: str) -> bool:
    """True when a line looks like a structural heading."""
    line = line.strip()
    if not line or len(line.split()) > MAX_HEADING_WORDS:
        return False
    if line.endswith(('.', ',', ';', ':')) and not MARKDOWN_HEADING.match(line):
        return False
    return any(p.match(line) for p in HEADING_PATTERNS)


def heading_level(line: str) -> int:
    """Depth of a heading: markdown hashes or dotted number depth, else 1."""
    line = line.strip()
    markdown = MARKDOWN_HEADING.match(line)
    if markdown:
        return len(markdown.group(1))
    numbered = NUMBERED_HEADING.match(line)
    if numbered:
        return numbered.group(1).count('.') + 1
    return 1


def _page_at(offset: int, pages: Sequence[StructuralHint]) -> Optional[int]:
    page = None
    for hint in pages:
        if hint.offset <= offset:
            try:
                page = int(re.sub(r'\D', '', hint.text) or 0) or None
            except ValueError:
                page = None
        else:
            break
    return page


def _sections_from_hints(text: str, hints: Sequence[StructuralHint]) -> List[Section]:
    sections = []
    headings = sorted((h for h in hints if h.kind == 'heading'), key=lambda h: h.offset)

    first = headings[0].offset if headings else len(text)
    if text[:first].strip():
        sections.append(Section(heading=None, level=0, body=text[:first].strip(), start_offset=0))

    for i, hint in enumerate(headings):
        end = headings[i + 1].offset if i + 1 < len(headings) else len(text)
        block = text[hint.offset:end]
        # Drop the heading line itself when it is present verbatim
        stripped = block.lstrip()
        if stripped.startswith(hint.text.strip()):
            block = stripped[len(hint.text.strip()):]
        sections.append(Section(
            heading=hint.text.strip(),
            level=hint.level,
            body=block.strip(),
            start_offset=hint.offset,
        ))
    return sections


def _list_item_lines(lines: Sequence[str]) -> Set[int]:
    """Indices of numbered lines adjacent to another numbered line (list items, not headings)."""
    numbered = [bool(NUMBERED_HEADING.match(line.strip())) for line in lines]
    return {
        i for i, flag in enumerate(numbered)
        if flag and ((i > 0 and numbered[i - 1]) or (i + 1 < len(numbered) and numbered[i + 1]))
    }


def _sections_from_patterns(text: str) -> List[Section]:
    sections = []
    heading, level, start = None, 0, 0
    body_lines: List[str] = []
    offset = 0

    lines = text.split('\n')
    list_items = _list_item_lines(lines)
    for i, line in enumerate(lines):
        if i not in list_items and is_heading(line):
            if body_lines or heading is not None:
                sections.append(Section(heading=heading, level=level,
                                        body='\n'.join(body_lines).strip(), start_offset=start))
            heading, level, start = clean_heading(line), heading_level(line), offset
            body_lines = []
        else:
            body_lines.append(line)
        offset += len(line) + 1

    if body_lines or heading is not None:
        sections.append(Section(heading=heading, level=level,
                                body='\n'.join(body_lines).strip(), start_offset=start))
    return sections


def _fold_empty_sections(sections: List[Section]) -> List[Section]:
    """
    Remove sections without body text.

    A heading that only opens deeper sections is structure and is dropped. Any
    other empty heading is a stray line: its text joins the body of the
    previous section, or opens an untitled preamble.
    """
    kept: List[Section] = []
    for i, section in enumerate(sections):
        if section.body.strip():
            kept.append(section)
            continue
        if not section.heading:
            continue
        following = sections[i + 1] if i + 1 < len(sections) else None
        if following is not None and following.level > section.level:
            continue
        if kept:
            kept[-1].body = f"{kept[-1].body}\n\n{section.heading}"
        else:
            kept.append(Section(heading=None, level=0, body=section.heading,
                                start_offset=section.start_offset, page=section.page))
    return kept


def parse_sections(document: Document) -> List[Section]:
    """
    Split a document into sections.

    Args:
        document: Input document

    Returns:
        Sections in document order, each with a non-empty body
    """
    text = document.raw_text or ''
    hints = document.structural_hints or ()
    has_heading_hints = any(h.kind == 'heading' for h in hints)

    if has_heading_hints:
        sections = _sections_from_hints(text, hints)
    else:
        sections = _sections_from_patterns(text)

    pages = sorted((h for h in hints if h.kind == 'page'), key=lambda h: h.offset)
    if pages:
        for section in sections:
            section.page = _page_at(section.start_offset, pages)

    kept = _fold_empty_sections(sections)
    logger.debug(
        f"Document {document.document_id}: {len(kept)} sections "
        f"({'hints' if has_heading_hints else 'patterns'})"
    )
    return kept
