"""
Real-time streaming: connection table, subscription index and schedulers.
"""
