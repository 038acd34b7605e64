"""``python -m pipebridge``."""

from pipebridge.cli.app import main

main()
