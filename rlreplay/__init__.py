"""
rlreplay

Top-level package initializer.

This file exposes the stable public API intended for end-users, while keeping
the internal module layout flexible.

The canonical public API definitions live in:
    rlreplay.common.buffers

Usage
-----
from rlreplay import build_replay, Transition
"""

from __future__ import annotations

from .common.buffers import *  # noqa: F401,F403
from .common.buffers import __all__  # noqa: F401
