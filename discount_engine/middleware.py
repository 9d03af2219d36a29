"""Middleware for the request's company/branch/staff context."""
from functools import wraps
from flask import g, request
from discount_engine.exceptions import UnauthorizedError


def load_request_context():
    """
    Load the calling POS context into g (Flask's per-request global).

    Authentication happens upstream; the gateway forwards the resolved
    identifiers as headers. Sets g.company_id, g.branch_id and g.staff_id.
    """
    g.company_id = request.headers.get('X-Company-Id', '').strip() or None
    g.branch_id = request.headers.get('X-Branch-Id', '').strip() or None
    g.staff_id = request.headers.get('X-Staff-Id', '').strip() or None


def require_company(f):
    """
    Decorator: Require a company context.

    Raises UnauthorizedError (403) when the X-Company-Id header is missing.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('company_id') is None:
            raise UnauthorizedError('X-Company-Id header is required')
        return f(*args, **kwargs)
    return decorated_function
