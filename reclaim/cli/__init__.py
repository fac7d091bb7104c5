"""Command-line tools (`python -m reclaim.cli.inspect`)."""
