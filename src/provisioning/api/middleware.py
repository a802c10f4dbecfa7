"""Request-scoped logging context."""

from uuid import uuid4

from fastapi import Request

from provisioning.utils.logging import add_context, clear_context

REQUEST_ID_HEADER = "X-Request-ID"


async def request_context_middleware(request: Request, call_next):
    """Tag every log line emitted while serving a request with its id and path."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
    clear_context()
    add_context(request_id=request_id, path=request.url.path)
    try:
        response = await call_next(request)
    finally:
        clear_context()
    response.headers[REQUEST_ID_HEADER] = request_id
    return response
