from fastapi import FastAPI
from tortoise.contrib.fastapi import register_tortoise

from scooter_bookings import settings
from scooter_bookings.routers.booking import router


def create_app() -> FastAPI:
    app = FastAPI(title="scooter-bookings-ms")
    app.include_router(router)
    register_tortoise(
        app,
        config={
            "connections": {"default": settings.db_url},
            "apps": {
                "models": {
                    "models": ["scooter_bookings.models"],
                    "default_connection": "default",
                },
            },
            # stored instants come back timezone-aware
            "use_tz": True,
            "timezone": "UTC",
        },
        generate_schemas=False,
    )
    return app


app = create_app()
