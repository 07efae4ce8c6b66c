import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

class RequestIdMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        # Attach to state for downstream usage
        request.state.request_id = request_id
        started = time.perf_counter()
        try:
            response: Response = await call_next(request)
        except Exception:
            logger.exception(f"Unhandled error. request_id={request_id} path={request.url.path}",
                             extra={"request_id": request_id})
            raise
        response.headers["X-Request-Id"] = request_id
        if self.log_requests:
            duration_ms = round((time.perf_counter() - started) * 1000.0, 1)
            logger.info(f"{request.method} {request.url.path} -> {response.status_code}",
                        extra={"request_id": request_id, "duration_ms": duration_ms})
        return response


def add_request_id_middleware(app, log_requests: bool = True):
    """Helper to register the RequestIdMiddleware on a FastAPI app"""
    app.add_middleware(RequestIdMiddleware, log_requests=log_requests)
