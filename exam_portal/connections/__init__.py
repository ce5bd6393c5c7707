from exam_portal.connections.mongo import mongo_lifespan, init_mongo, close_mongo
from exam_portal.connections.redis import redis_lifespan, get_redis
