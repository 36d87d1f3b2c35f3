from slowapi import Limiter
from slowapi.util import get_remote_address

LOGIN_LIMIT = "5/15minutes"
VERIFY_LIMIT = "10/15minutes"
RESEND_LIMIT = "3/5minutes"

# @limiter.limit goes directly under the @router decorator; the route needs a
# `request: Request` argument.
limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
