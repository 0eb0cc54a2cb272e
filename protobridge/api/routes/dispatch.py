"""Shared request handling for the two dialect endpoints."""

import logging
import time
import uuid

from fastapi import Request, Response
from starlette.requests import ClientDisconnect

logger = logging.getLogger("protobridge")


async def dispatch_to_gateway(request: Request) -> Response:
    """Read the body and hand the request to the app's Gateway."""
    # Generate request ID for log correlation
    req_id = uuid.uuid4().hex[:8]
    start_time = time.perf_counter()
    client_host = request.client.host if request.client else "unknown"
    logger.info(
        f"[{req_id}] {request.method} {request.url.path} from {client_host}, "
        f"Content-Length: {request.headers.get('content-length', 'not-set')}"
    )

    try:
        body = await request.body()
    except ClientDisconnect:
        elapsed = time.perf_counter() - start_time
        logger.warning(f"[{req_id}] ClientDisconnect after {elapsed:.3f}s while reading body")
        return Response(status_code=499)  # Client Closed Request

    gateway = request.app.state.gateway
    response = await gateway.handle(
        request.url.path,
        body,
        request.headers,
        disconnect_checker=request.is_disconnected,
        req_id=req_id,
    )
    elapsed = time.perf_counter() - start_time
    logger.debug(f"[{req_id}] Response ready with status {response.status_code} after {elapsed:.3f}s")
    return response
