from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from pushworker.api.routes import cron, notifications
from pushworker.core.exceptions import global_exception_handler, http_exception_handler, job_not_enqueueable_exception_handler, job_not_found_exception_handler, request_validation_exception_handler
from pushworker.core.lifespan import lifespan
from pushworker.core.middleware import RequestLoggingMiddleware
from pushworker.dispatch.errors import JobNotEnqueueableError, JobNotFoundError

app = FastAPI(title="pushworker", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(JobNotFoundError, job_not_found_exception_handler)
app.add_exception_handler(JobNotEnqueueableError, job_not_enqueueable_exception_handler)

app.add_middleware(RequestLoggingMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": "0.1.0"}


app.include_router(notifications.router, prefix="/v1/notifications", tags=["notifications"])
app.include_router(cron.router, prefix="/internal", tags=["cron"])
