"""
socialpipe - event-driven interaction pipeline for a social network backend.

After a write commits, publishes its events, updates cached counters and
lists, and pushes live updates; consumes the events to materialize
notifications and maintain caches; composes ranked feeds.
"""

__version__ = "0.1.0"
