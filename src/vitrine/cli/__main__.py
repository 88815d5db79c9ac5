"""CLI entry point for vitrine.cli module.

Enables execution via: python -m vitrine.cli
"""

from vitrine.cli.run_worker import main

if __name__ == "__main__":
    main()
