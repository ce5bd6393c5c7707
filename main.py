import logging

from fastapi import FastAPI
from contextlib import AsyncExitStack

from exam_portal.connections import mongo_lifespan
from exam_portal.connections.redis import redis_lifespan
from exam_portal.api.user import router as user_router
from exam_portal.api.attempt import router as attempt_router
from exam_portal.api.exam import router as exam_router
from exam_portal.middleware import RequestLoggingMiddleware, register_exception_handlers
from exam_portal.services.expiry import reconcile_overdue_attempts
from exam_portal.utils.config import settings
from exam_portal.utils.logging import configure_logging


configure_logging()
logger = logging.getLogger("exam_portal")


async def combined_lifespan(app: FastAPI):
    async with AsyncExitStack() as stack:
        await stack.enter_async_context(mongo_lifespan(app))
        await stack.enter_async_context(redis_lifespan(app))

        # Close attempts whose deadline passed while the server was down
        reconcile_overdue_attempts()
        logger.info("%s started (%s)", settings.app_name, settings.environment)
        yield


app = FastAPI(title="Exam Portal", version="0.1.0", lifespan=combined_lifespan)

app.add_middleware(RequestLoggingMiddleware)
register_exception_handlers(app)

app.include_router(user_router, prefix="/api/users", tags=["Users"])
app.include_router(exam_router, prefix="/api/exams", tags=["Exams"])
app.include_router(attempt_router, prefix="/api/attempts", tags=["Attempts"])
