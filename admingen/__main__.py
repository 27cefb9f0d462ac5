# File: admingen/__main__.py
"""
AdminGen - Module entry point.

Allows running the CLI directly via::

    python -m admingen check -m config/admingen

This module simply delegates to the CLI entry point defined in ``admingen.cli``.
"""

from __future__ import annotations


def main() -> None:
    """Delegate to the CLI main function."""
    from admingen.cli import main as cli_main
    cli_main()


if __name__ == "__main__":
    main()
