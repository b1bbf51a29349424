"""
Shared slowapi rate limiter, keyed by client address.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)

ORDER_CREATE_LIMIT = "30/minute"
LOGIN_LIMIT = "10/minute"
