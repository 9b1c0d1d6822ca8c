"""
Adds the display timezone to every response so clients can render
certificate dates and session deadlines the way the server formats them.
"""
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..utils.timezone import get_display_tz, utc_to_display, utcnow


class TimezoneMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        local_now = utc_to_display(utcnow())
        response.headers["X-Timezone"] = get_display_tz().zone
        response.headers["X-Timezone-Offset"] = local_now.strftime("%z")
        response.headers["X-Server-Time"] = local_now.isoformat()

        return response
