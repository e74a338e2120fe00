import asyncio
import time
from fastapi import Request, Response
from chainindex.core.logger import logger
from chainindex.core.sanitize import sanitize_headers

REQUEST_TIMEOUT_SECONDS = 300.0


async def request_logging_middleware(request: Request, call_next):
    """
    Log method, path, status and duration of every request.

    Bodies are never logged: they carry tenant credentials and event payloads.
    """
    start_time = time.time()
    try:
        response: Response = await asyncio.wait_for(call_next(request), timeout=REQUEST_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        process_time_sec = time.time() - start_time
        logger.error(
            f"{request.method} {request.url.path} ({round(process_time_sec, 2)}): status_code: 504",
            extra={"headers": sanitize_headers(dict(request.headers))},
        )
        return Response(content="Request processing time exceeded the maximum timeout", status_code=504)
    process_time_sec = time.time() - start_time
    logger.info(f"{request.method} {request.url.path} ({round(process_time_sec, 2)}): status_code: {response.status_code}")
    return response
