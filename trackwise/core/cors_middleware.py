"""Custom CORS middleware for handling different origin policies."""

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse

TRACKING_ALLOW_METHODS = "GET, POST, OPTIONS"
TRACKING_ALLOW_HEADERS = "Content-Type, Authorization, X-Requested-With"
TRACKING_MAX_AGE = "86400"


class TrackingCORSMiddleware(BaseHTTPMiddleware):
    """
    Tracking endpoints are called from arbitrary customer sites, so they
    accept every origin. Everything else (the analytics API) is limited to
    the dashboard origins.
    """

    def __init__(self, app, restricted_origins: list, tracking_paths: list = None):
        super().__init__(app)
        self.restricted_origins = restricted_origins
        self.tracking_paths = tracking_paths or ["/beacon", "/events", "/tracking/"]

    def is_tracking_path(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.tracking_paths)

    async def dispatch(self, request: Request, call_next):
        """Handle CORS based on the endpoint."""
        if self.is_tracking_path(request.url.path):
            return await self._handle_tracking_cors(request, call_next)
        return await self._handle_restricted_cors(request, call_next)

    @staticmethod
    def _apply_tracking_headers(response, origin):
        response.headers["Access-Control-Allow-Origin"] = origin or "*"
        response.headers["Access-Control-Allow-Methods"] = TRACKING_ALLOW_METHODS
        response.headers["Access-Control-Allow-Headers"] = TRACKING_ALLOW_HEADERS
        if origin:
            response.headers["Vary"] = "Origin"
        return response

    async def _handle_tracking_cors(self, request: Request, call_next):
        """Handle CORS for tracking endpoints - allow all origins."""
        origin = request.headers.get("origin")

        # Preflight requests never reach the routes
        if request.method == "OPTIONS" and request.headers.get("access-control-request-method"):
            response = StarletteResponse(status_code=200)
            self._apply_tracking_headers(response, origin)
            response.headers["Access-Control-Max-Age"] = TRACKING_MAX_AGE
            return response

        response = await call_next(request)
        return self._apply_tracking_headers(response, origin)

    async def _handle_restricted_cors(self, request: Request, call_next):
        """Handle CORS for restricted endpoints."""
        origin = request.headers.get("origin")

        # Allow same-origin requests (no origin header or same host)
        if not origin or origin == str(request.base_url).rstrip('/'):
            return await call_next(request)

        if origin not in self.restricted_origins:
            return StarletteResponse(
                content="Disallowed CORS origin",
                status_code=400,
                headers={"Content-Type": "text/plain"}
            )

        if request.method == "OPTIONS":
            response = StarletteResponse()
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Accept, Authorization, Content-Type, X-Requested-With"
            response.headers["Access-Control-Max-Age"] = "600"
            return response

        response = await call_next(request)
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        return response
