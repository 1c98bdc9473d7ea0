"""Allow running the CLI with python -m snapstore.cli."""

from snapstore.cli.main import main

main()
