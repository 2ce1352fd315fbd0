# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Shared volplugin components.
"""

__all__ = [
    'backoff', 'poll_until', 'wait_for_state',
    'LoopExceeded', 'TimedOut', 'SystemClock',
    'run_process', 'ProcessTimeout',
]

from ._retry import (
    backoff, poll_until, wait_for_state, LoopExceeded, TimedOut, SystemClock,
)
from .process import run_process, ProcessTimeout
