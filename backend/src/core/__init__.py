"""
Settings, structured logging and security helpers shared across the service.
"""
