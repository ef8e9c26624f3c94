"""
api/limiter.py -- the one slowapi Limiter every route module decorates with.

Counters live in process memory and are keyed by client address. Tests call
limiter.reset() between cases.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

LOGIN_LIMIT = get_settings().login_rate_limit  # login and register
READ_LIMIT = "120/minute"
WRITE_LIMIT = "30/minute"
IMPORT_LIMIT = "5/minute"
