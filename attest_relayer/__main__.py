"""
Entry point for running the relayer as a module.

Usage:
    python -m attest_relayer
"""

from attest_relayer.cli import main

if __name__ == "__main__":
    main()
