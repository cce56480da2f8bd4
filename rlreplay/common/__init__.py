"""
common package
==============

Building blocks shared by the learners:

- ``buffers``: experience replay buffers, selectors and the buffer factory
- ``utils``: NumPy/Torch conversion and buffer bookkeeping helpers
- ``testers``: the test suites and their mini runner
"""

from __future__ import annotations

__all__ = [
    "buffers",
    "utils",
]
