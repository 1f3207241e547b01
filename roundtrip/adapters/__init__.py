"""External adapters for the Roundtrip test harness.

This package provides implementations of the core port interfaces.

Adapter Organization:

- client/: Protocol client adapters (loopback homeserver, etc.)
- notification/: Adapters for reporting the summary (stdout, webhook)
"""
