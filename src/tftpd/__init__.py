"""TFTP server (RFC 1350, octet mode)

The package separates packet framing from the per-transfer state machines:
- ``packet``: the five TFTP packet kinds and their wire encoding
- ``retry``: the bounded send-and-wait exchange both directions share
- ``sender`` / ``receiver``: read- and write-request sessions
- ``server``: the listener, session registry and per-session threads
"""

__all__ = []
