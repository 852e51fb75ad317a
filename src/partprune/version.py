"""
Version information for partprune.
"""

from __future__ import annotations

__version__ = "0.3.1"

assert len(__version__) <= 10
