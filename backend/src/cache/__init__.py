"""
Redis-backed storage for short-lived state such as admin sessions.
"""
