import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from vitalite.api.routes import activities, auth, sync, user, views
from vitalite.core.config import settings
from vitalite.core.database import make_store_provider

logging.basicConfig(level=settings.log_level, format="%(asctime)s - %(levelname)s - %(name)s - %(message)s")

@asynccontextmanager
async def lifespan(app: FastAPI):
    store_provider = make_store_provider(settings)
    store_provider.create_tables()
    app.state.store_provider = store_provider
    logging.getLogger(__name__).info("Storage backend: %s", settings.storage_backend.value)
    yield

app = FastAPI(title="Vitalité", lifespan=lifespan)

app.include_router(views.router)
app.include_router(auth.router)
app.include_router(sync.router)
app.include_router(user.router)
app.include_router(activities.router)
