from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from contextlib import asynccontextmanager
import asyncio
import logging
import os

from podcutter.core.config import settings, load_config
from podcutter.core.downloader import MediaDownloader
from podcutter.core.feed import RSSListingProvider
from podcutter.core.media import MediaProcessor
from podcutter.core.sponsorblock import SponsorBlockClient
from podcutter.core.updater import Updater
from podcutter.infra.database import init_db
from podcutter.infra.repository import EpisodeRepository
from podcutter.infra.storage import LocalStorage

# Configure logging
from logging.handlers import RotatingFileHandler

logger = logging.getLogger(__name__)


def setup_logging():
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            RotatingFileHandler(
                os.path.join(settings.DATA_DIR, "podcutter.log"),
                maxBytes=settings.LOG_MAX_BYTES,
                backupCount=settings.LOG_BACKUP_COUNT
            ),
            logging.StreamHandler()
        ]
    )


def create_updater(config) -> Updater:
    return Updater(
        config=config,
        repo=EpisodeRepository(),
        storage=LocalStorage(settings.FEEDS_DIR),
        listing_provider=RSSListingProvider(),
        downloader=MediaDownloader(),
        sponsorblock=SponsorBlockClient(config.sponsorblock.url),
        media=MediaProcessor(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    settings.ensure_directories()
    setup_logging()
    logger.info("Starting podcutter...")
    init_db()
    logger.info(f"Database initialized at {settings.DB_PATH}")

    config = load_config()
    logger.info(f"Loaded {len(config.feeds)} feed(s) from {settings.CONFIG_PATH}")

    # Start background updater
    stop_event = asyncio.Event()
    updater = create_updater(config)
    runner = asyncio.create_task(updater.run_loop(stop_event))

    yield

    # Shutdown
    logger.info("Shutting down...")
    stop_event.set()
    runner.cancel()
    try:
        await runner
    except asyncio.CancelledError:
        pass


app = FastAPI(
    title="podcutter",
    lifespan=lifespan
)


@app.get("/health")
async def health():
    return {"status": "healthy"}


# Feed documents and episode media, served as {feed_id}.xml and {feed_id}/{episode}
os.makedirs(settings.FEEDS_DIR, exist_ok=True)
app.mount("/", StaticFiles(directory=settings.FEEDS_DIR), name="feeds")
