from exam_portal.middleware.exceptions import register_exception_handlers
from exam_portal.middleware.logging import RequestLoggingMiddleware
