"""Tests for the command-line interface."""

from datetime import date

import pytest

from arxivcache import cli
from arxivcache.cache import ArxivCache
from arxivcache.config import Settings
from arxivcache.models.paper import Paper


@pytest.fixture
def cache_dir(tmp_path, mocker):
    Settings.reset()
    mocker.patch.object(cli, "_install_interrupt_handler")
    yield tmp_path / "cache"
    Settings.reset()


def _seed(cache_dir):
    settings = Settings.load(cache_dir)
    with ArxivCache.open(settings) as cache:
        cache.repo.upsert(
            Paper(
                id="2301.00001",
                title="Graph transformers",
                abstract="We study graph transformers.",
                categories="cs.LG",
                created=date(2023, 1, 1),
            )
        )
        cache.citations.update_citations("2301.00001", ["2201.00001"])


def test_parser_commands():
    parser = cli.create_parser()

    args = parser.parse_args(["sync", "--set", "cs", "--from", "2024-01-02"])
    assert args.set_spec == "cs"
    assert args.from_date == date(2024, 1, 2)

    args = parser.parse_args(["fetch", "2301.00001", "--all"])
    assert args.ids == ["2301.00001"] and args.all and args.source

    with pytest.raises(SystemExit):
        parser.parse_args(["sync", "--from", "yesterday"])
    with pytest.raises(SystemExit):
        parser.parse_args(["download"])


def test_stats(cache_dir, capsys):
    assert cli.main(["--cache-dir", str(cache_dir), "stats"]) == 0
    assert "Papers" in capsys.readouterr().out


def test_search_and_graph(cache_dir, capsys):
    _seed(cache_dir)
    Settings.reset()

    assert cli.main(["--cache-dir", str(cache_dir), "search", "graph"]) == 0
    assert "2301.00001" in capsys.readouterr().out

    assert cli.main(["--cache-dir", str(cache_dir), "graph", "2301.00001", "--json"]) == 0
    assert '"target": "2201.00001"' in capsys.readouterr().out


def test_unknown_paper_is_an_error(cache_dir, capsys):
    assert cli.main(["--cache-dir", str(cache_dir), "get", "2301.99999"]) == 1
    assert "paper not found" in capsys.readouterr().out


def test_config_set_persists(cache_dir):
    assert cli.main(["--cache-dir", str(cache_dir), "config", "batch_size=200"]) == 0
    assert Settings.reload(cache_dir).batch_size == 200
