import logging
import contextvars
from contextlib import contextmanager

# Extra attributes stamped onto every log record emitted inside a LoggingContext
log_context = contextvars.ContextVar("log_context", default={})


class ContextFilter(logging.Filter):
    def filter(self, record):
        context = log_context.get()
        for key, value in context.items():
            setattr(record, key, value)
        return True


@contextmanager
def LoggingContext(logger: logging.Logger, **kwargs):
    """
    Context manager to add extra context to log records.
    example:
        with LoggingContext(logger, job_id="job-1", connection_id="conn-1"):
            logger.info("This log will carry job_id and connection_id")
    """
    current = log_context.get().copy()
    current.update(kwargs)
    token = log_context.set(current)
    try:
        yield
    finally:
        log_context.reset(token)
