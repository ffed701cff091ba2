import logging
import time
import uuid

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("pushworker.core.middleware")


class RequestLoggingMiddleware:
  """Tag each request with an id and log its method, path, status and latency."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    request_id = str(uuid.uuid4())
    scope.setdefault("state", {})["request_id"] = request_id
    start_time = time.time()
    method = scope.get("method", "UNKNOWN")
    path = scope.get("path", "")
    logger.info("Incoming request request_id=%s %s %s", request_id, method, path)
    status_code = 500

    async def send_wrapper(message: Message) -> None:
      nonlocal status_code
      if message["type"] == "http.response.start":
        status_code = message["status"]
        headers = MutableHeaders(scope=message)
        headers.append("X-Request-ID", request_id)
      await send(message)

    try:
      await self.app(scope, receive, send_wrapper)
    finally:
      elapsed_ms = (time.time() - start_time) * 1000
      logger.info("Completed request request_id=%s %s %s status=%s duration_ms=%.1f", request_id, method, path, status_code, elapsed_ms)
