"""Main entry point for ``python -m circdesk``."""

from circdesk.cli import main

if __name__ == "__main__":
    main()
