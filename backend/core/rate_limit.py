from slowapi import Limiter
from slowapi.util import get_remote_address

# Shared by main.py (exception handler) and the routers (per-route limits)
limiter = Limiter(key_func=get_remote_address)
