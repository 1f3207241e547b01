"""Protocol client adapters driving the remote service.

Implementations:
- Loopback (in-process simulated homeserver with latency and sync)
"""
