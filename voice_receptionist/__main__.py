"""
Entry point for running voice_receptionist as a module.

Usage:
    python -m voice_receptionist
    python -m voice_receptionist --business-profile ./my-shop.json
"""

from .src.main import main

if __name__ == "__main__":
    main()
