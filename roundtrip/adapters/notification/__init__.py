"""Notification adapters for reporting the suite summary.

Implementations support multiple output channels:
- Stdout (terminal pretty-print)
- Webhook (JSON POST to an HTTP endpoint)
"""
