"""
digest-spine - Distributed scheduled-digest execution engine.

Decides, from any number of cooperating server processes, which users'
recurring digests are due right now in their own time zone, and runs each
one at most once per scheduled local day.

- digest_spine.core: persistence, patches, errors, settings, logging
- digest_spine.scheduling: lease, timer, matching, claim, check pass, health
- digest_spine.execution: circuit breaker and concurrency queue
"""

__version__ = "0.1.0"
