# app/core/logging_middleware.py
from fastapi import Request
from app.core.logger import logger
import time
import uuid

REQUEST_ID_HEADER = "X-Request-ID"

async def log_requests(request: Request, call_next):
    """
    Log every request/response with timing.

    Everything logged while the request runs carries request_id and path in
    its extra, so a reconciliation error can be traced to the call behind it.
    """
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
    method = request.method
    path = request.url.path
    start_time = time.perf_counter()

    with logger.contextualize(request_id=request_id, path=path):
        logger.info(f"-> {method} {path}")

        try:
            response = await call_next(request)
        except Exception:
            process_time = (time.perf_counter() - start_time) * 1000
            logger.exception(f"!! {method} {path} - failed after {process_time:.2f}ms")
            raise

        process_time = (time.perf_counter() - start_time) * 1000  # ms
        level = "WARNING" if response.status_code >= 500 else "INFO"
        logger.log(level, f"<- {method} {path} - Status: {response.status_code} - Time: {process_time:.2f}ms")

    response.headers[REQUEST_ID_HEADER] = request_id
    return response
