"""HTTP route table."""

from api import health
from api.debug import routes as debug_routes
from api.messages import send
from api.slack import events
from api.users import refresh_cache

ROUTES = [
    ("GET", "/health", health.handler),
    ("POST", "/health", health.handler),
    ("POST", "/slack/events", events.handler),
    ("POST", "/api/send-message", send.handler),
    ("POST", "/api/refresh-user-cache", refresh_cache.handler),
    ("GET", "/debug/threads", debug_routes.threads_handler),
    ("GET", "/debug/routes", debug_routes.routes_handler),
]


def resolve(method: str, path: str):
    """Return ``(handler, allowed_methods)``; handler is None when nothing matches."""
    path = path.rstrip("/") or "/"
    allowed = [route_method for route_method, route_path, _ in ROUTES if route_path == path]
    for route_method, route_path, route_handler in ROUTES:
        if route_path == path and route_method == method:
            return route_handler, allowed
    return None, allowed
