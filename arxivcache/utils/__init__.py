"""Utility functions."""

from arxivcache.utils.identifiers import (
    extract_arxiv_id,
    id_to_date,
    is_arxiv_id,
    paper_prefix,
    strip_version,
    year_from_id,
)
from arxivcache.utils.lru import LRUCache
from arxivcache.utils.text import clean_abstract, clean_title, parse_date

__all__ = [
    "LRUCache",
    "clean_abstract",
    "clean_title",
    "extract_arxiv_id",
    "id_to_date",
    "is_arxiv_id",
    "paper_prefix",
    "parse_date",
    "strip_version",
    "year_from_id",
]
