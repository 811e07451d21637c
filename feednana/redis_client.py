import redis

from feednana.config import Settings


def make_redis(settings: Settings) -> redis.Redis:
    return redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password or None,
        db=settings.redis_db,
        decode_responses=False,  # Keep as False for binary data safety
        socket_connect_timeout=5,
        health_check_interval=30,
    )
