# app/core/db.py
"""
Tortoise ORM setup shared by the app and Aerich migrations
(see [tool.aerich] in pyproject.toml).
"""
import logging

from tortoise import Tortoise

from app.config import settings

logger = logging.getLogger("uvicorn.error")

DB_URL = settings.database_url

TORTOISE_ORM = {
    "connections": {"default": DB_URL},
    "apps": {
        "models": {
            "models": [
                "app.models.user",           # Student / Faculty / Admin
                "app.models.chat",           # ChatRoom / ChatMessage
                "aerich.models",             # Aerich migration bookkeeping
            ],
            "default_connection": "default",
        },
    },
}

async def init_db():
    """
    Connect Tortoise and register the models.

    Schemas come from Aerich migrations; only a SQLite URL (local runs) gets
    its tables generated here.
    """
    url = TORTOISE_ORM["connections"]["default"]
    await Tortoise.init(config=TORTOISE_ORM)
    if url.startswith("sqlite"):
        await Tortoise.generate_schemas(safe=True)
    logger.info("[db] connected (%s)", url.split("://", 1)[0])

async def close_db():
    await Tortoise.close_connections()
