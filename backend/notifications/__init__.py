"""
Tool announcement digests for the AI tools directory.

This module handles:
- Resolving the deduplicated audience (mailing list + registered accounts)
- Recording each digest window in the notification ledger
- Sending digests one recipient at a time with a fixed delay
- Scheduling daily/weekly digests, with a startup catch-up
- The alternate in-memory announcement queue
"""

from .digest_runner import DigestRunner
from .recipients import get_all_recipients
from .scheduler import DigestScheduler, build_scheduler

__all__ = [
    'DigestRunner',
    'DigestScheduler',
    'build_scheduler',
    'get_all_recipients',
]
