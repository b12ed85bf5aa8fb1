"""Entry point for running arxivcache as a module or installed script.

Usage:
    arxivcache <command> ... / python -m arxivcache <command> ...
"""

from arxivcache.cli import run_cli


def run() -> None:
    """Entry point: dispatch to the CLI."""
    run_cli()


if __name__ == "__main__":
    run()
