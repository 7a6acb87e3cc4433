"""Debug endpoints, hidden in production."""

from src.services.thread_store import get_thread_store
from src.utils.responses import json_response
from src.utils.settings import get_settings


def _not_found():
    return json_response(404, {"error": "Not found"})


def threads_handler(request):
    """List stored user -> thread mappings."""
    if get_settings().is_production:
        return _not_found()

    store = get_thread_store()
    return json_response(200, {"count": store.size(), "threads": store.get_all()})


def routes_handler(request):
    """List the registered HTTP routes."""
    if get_settings().is_production:
        return _not_found()

    from api.routes import ROUTES

    routes = [{"method": method, "path": path} for method, path, _ in ROUTES]
    return json_response(200, {"count": len(routes), "routes": routes})
