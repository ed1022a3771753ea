"""
Push-notification server: server-sent event streams grouped into
(handler, route) channels, fed by polled change detection and direct
notify requests.
"""

__version__ = "0.1.0"
