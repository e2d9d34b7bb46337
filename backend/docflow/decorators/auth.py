from functools import wraps
from flask_jwt_extended import verify_jwt_in_request
from docflow.errors import PermissionDenied
from docflow.services.policy import current_actor


def require_capability(module: str, action: str):
    """Gate a view on one catalog capability held by the JWT's role set."""
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            from docflow import get_services
            services = get_services()
            capability = services.catalog.get(module, action)
            if not services.evaluator.authorize(current_actor().roles, capability):
                raise PermissionDenied()
            return fn(*args, **kwargs)
        return wrapper
    return outer
