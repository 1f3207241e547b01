"""Roundtrip: an end-to-end test harness for a chat protocol client.

Logs in, joins a test room, runs a suite of asynchronous round-trip
tests concurrently under a global watchdog, and reports the results
back to the room and through the process exit status.
"""

__version__ = "0.1.0"
