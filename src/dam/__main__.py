"""Entry point for running the webhook dispatcher as a module.

Usage:
    python -m dam
"""

from .worker import main

if __name__ == "__main__":
    main()
