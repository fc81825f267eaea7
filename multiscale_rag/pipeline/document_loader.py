# -*- coding: utf-8 -*-
"""
Document loading from text, markdown and JSON files.

Text and markdown files become one Document each (id = file stem,
version 1). JSON files hold one loader-contract dict or a list of them:

    {"id": "fund_a", "version": 2, "text": "...",
     "structural_hints": [{"kind": "heading", "text": "Fees", "offset": 1200, "level": 2}]}

Directories are searched (non-recursively) for the supported suffixes.

Examples:
    documents = load_documents(['data/prospectuses'])
    documents = load_documents(['corpus.json', 'notes.md'])
"""
# Standard library
import json
import logging
from pathlib import Path
from typing import Iterable, List, Union

# Foundation
from multiscale_rag.utils.dataclasses import Document

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = ('.txt', '.md', '.markdown')
JSON_SUFFIXES = ('.json',)


def load_text_file(path: Path, version: int = 1) -> Document:
    with open(path, 'r', encoding='utf-8') as f:
        text = f.read()
    return Document(
        document_id=path.stem,
        version=version,
        raw_text=text,
        metadata={'source_path': str(path)},
    )


def load_json_file(path: Path) -> List[Document]:
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    records = data if isinstance(data, list) else [data]
    return [Document.from_dict(record) for record in records]


def load_documents(paths: Iterable[Union[str, Path]], version: int = 1) -> List[Document]:
    """
    Load documents from files and directories.

    Args:
        paths: Files or directories
        version: Version assigned to text/markdown documents

    Returns:
        Documents in path order (directory entries sorted by name)

    Raises:
        FileNotFoundError: A path does not exist
    """
    paths = list(paths)
    documents = []
    for raw in paths:
        path = Path(raw)
        if not path.exists():
            raise FileNotFoundError(f"Document path not found: {path}")

        files = sorted(p for p in path.iterdir() if p.is_file()) if path.is_dir() else [path]
        for file_path in files:
            suffix = file_path.suffix.lower()
            if suffix in TEXT_SUFFIXES:
                documents.append(load_text_file(file_path, version))
            elif suffix in JSON_SUFFIXES:
                documents.extend(load_json_file(file_path))
            elif not path.is_dir():
                logger.warning(f"Unsupported file type skipped: {file_path}")

    logger.info(f"Loaded {len(documents)} documents from {len(paths)} paths")
    return documents
