import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import certifi
from fastapi import FastAPI
from mongoengine import connect, disconnect

from exam_portal.utils.config import settings


logger = logging.getLogger(__name__)


def connect_options() -> dict:
    # Aware datetimes keep deadline arithmetic in UTC
    options: dict = {"tz_aware": True}
    if settings.mongo_srv:
        options["tlsCAFile"] = certifi.where()
    return options


def init_mongo() -> None:
    connect(host=settings.mongo_uri, alias="default", **connect_options())
    logger.info("Connected to MongoDB database %s", settings.mongo_db)


def close_mongo() -> None:
    disconnect(alias="default")


@asynccontextmanager
async def mongo_lifespan(app: FastAPI) -> AsyncIterator[None]:
    init_mongo()
    try:
        yield
    finally:
        close_mongo()
