"""Tests for identifier helpers."""

import pytest

from arxivcache.utils.identifiers import (
    artifact_stem,
    extract_arxiv_id,
    id_to_date,
    is_arxiv_id,
    paper_prefix,
    strip_version,
    year_from_id,
)


@pytest.mark.parametrize(
    "value,expected",
    [
        ("2301.00001", True),
        ("2301.123456", True),
        ("0704.0001", True),
        ("hep-th/9901001", True),
        ("math.CO/0001001", True),
        ("2301.00001v2", False),
        ("230.00001", False),
        ("hello", False),
    ],
)
def test_is_arxiv_id(value, expected):
    assert is_arxiv_id(value) is expected


def test_strip_version():
    assert strip_version("2301.00001v12") == "2301.00001"
    assert strip_version("hep-th/9901001v2") == "hep-th/9901001"
    assert strip_version("2301.00001") == "2301.00001"


@pytest.mark.parametrize(
    "value,expected",
    [
        ("2301.00001", "2301.00001"),
        ("2301.00001v3", "2301.00001"),
        ("https://arxiv.org/abs/2301.00001v2", "2301.00001"),
        ("https://arxiv.org/pdf/2301.00001v2.pdf", "2301.00001"),
        ("http://arxiv.org/abs/hep-th/9901001?context=x", "hep-th/9901001"),
        ("not an id", None),
    ],
)
def test_extract_arxiv_id(value, expected):
    assert extract_arxiv_id(value) == expected


def test_paper_prefix_and_stem():
    assert paper_prefix("2301.00001") == "2301"
    assert artifact_stem("2301.00001") == "2301.00001"
    assert paper_prefix("hep-th/9901001") == "hep-th"
    assert artifact_stem("hep-th/9901001") == "9901001"


@pytest.mark.parametrize(
    "paper_id,year",
    [
        ("hep-th/9901001", 1999),
        ("0501.00001", 2005),
        ("math/9512001", 1995),
        ("2301.00001v2", 2023),
        ("cs/0001001", 2000),
    ],
)
def test_year_from_id(paper_id, year):
    assert year_from_id(paper_id) == year


def test_id_to_date():
    assert id_to_date("2302.13971") == "Feb 2023"
    assert id_to_date("hep-th/9901001") == "Jan 1999"
