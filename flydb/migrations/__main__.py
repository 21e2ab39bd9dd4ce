"""Entry point for running migrations as a module.

Usage:
    python -m flydb.migrations init
    python -m flydb.migrations migrate
    python -m flydb.migrations rollback --version 3
    python -m flydb.migrations status
"""

from .cli import main

if __name__ == "__main__":
    main()
