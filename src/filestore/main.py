from contextlib import asynccontextmanager
import asyncio
import logging

from fastapi import FastAPI
import uvicorn

from filestore.configs.config import LogLevel, get_config
from filestore.routes import files, health
from filestore.storage import get_store

logger = logging.getLogger(__name__)


def configure_logging(level: LogLevel) -> None:
    # uvicorn's "trace" level has no stdlib counterpart
    name = "DEBUG" if level is LogLevel.TRACE else level.value.upper()
    logging.basicConfig(
        level=getattr(logging, name),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(get_config().filestore_log_level)
    # Selecting the backend at startup surfaces misconfiguration before serving
    store = get_store()
    logger.info(f"Storage backend ready: {store.name}")

    yield

    await store.aclose()


app = FastAPI(
    title="filestore API",
    description="Pluggable file storage for local disk, S3 and Cloudinary",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(files.router)


async def main():
    logger.info("Starting filestore API...")
    config = uvicorn.Config(
        app,
        host=get_config().fastapi_host,
        port=get_config().fastapi_port,
        log_level=get_config().filestore_log_level.value,
        access_log=True,
    )
    server = uvicorn.Server(config)

    try:
        await server.serve()
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")
    except Exception as e:
        logger.error(f"Server error: {str(e)}")
        raise


if __name__ == "__main__":
    asyncio.run(main())
