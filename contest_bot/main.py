"""
Contest registration bot.
Entry point: creates the bot, wires the dialog engine, handles graceful shutdown.
"""
import asyncio
import logging
import signal
import sys

from aiogram import Bot, Dispatcher
from aiogram.types import ErrorEvent

from contest_bot.config import settings
from contest_bot.dialogs import DialogEngine, build_registry
from contest_bot.dialogs.commands import CommandProcessor
from contest_bot.models.base import AsyncSessionFactory, Base, engine
from contest_bot.services import ContestDirectory, DialogStateStore
from contest_bot.transport import AiogramTransport

# ── Handlers ──────────────────────────────────────────────────────────────────
from contest_bot.handlers.dialog import router as dialog_router
from contest_bot.handlers.fallback import router as fallback_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


async def create_tables() -> None:
    """Create contest and dialog state tables if they are missing."""
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Schema ready at %s", settings.DATABASE_URL.split("@")[-1])
    except Exception as e:
        logger.critical(
            "Cannot connect to database %s: %s",
            settings.DATABASE_URL.split("@")[-1],   # hide credentials in log
            e,
        )
        sys.exit(1)


def build_engine(bot: Bot) -> DialogEngine:
    return DialogEngine(
        registry=build_registry(),
        directory=ContestDirectory(AsyncSessionFactory),
        states=DialogStateStore(AsyncSessionFactory),
        transport=AiogramTransport(bot),
        command_handler=CommandProcessor(admin_ids=settings.admin_ids_list),
        cancel_keyword=settings.CANCEL_KEYWORD,
        max_handoffs=settings.MAX_HANDOFFS,
        logger=logging.getLogger("contest_bot.dialogs"),
    )


def build_dispatcher(dialog_engine: DialogEngine) -> Dispatcher:
    # Dialog state lives in the database, aiogram's FSM storage is unused.
    dp = Dispatcher(engine=dialog_engine)

    @dp.errors()
    async def handle_error(event: ErrorEvent) -> None:
        logger.exception("Unhandled error: %s", event.exception)

    # ── Routers: dialog text first, fallback for everything else ──────────────
    dp.include_router(dialog_router)

    # Non-text updates only
    dp.include_router(fallback_router)

    return dp


async def main() -> None:
    logger.info("Starting contest registration bot…")
    await create_tables()

    bot = Bot(token=settings.BOT_TOKEN)
    dialog_engine = build_engine(bot)
    dp = build_dispatcher(dialog_engine)

    # ── Graceful shutdown on SIGTERM (Docker / systemd) ───────────────────────
    loop = asyncio.get_running_loop()

    def _handle_signal():
        logger.info("Stop signal received, finishing current updates…")
        asyncio.ensure_future(dp.stop_polling())

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _handle_signal)
        except NotImplementedError:
            # not available on Windows event loops
            pass

    try:
        logger.info("Polling for updates (Ctrl+C to stop)")
        await dp.start_polling(
            bot,
            allowed_updates=dp.resolve_used_update_types(),
            handle_signals=False,
        )
    finally:
        logger.info("Waiting for broadcasts and closing connections…")
        await dialog_engine.wait_broadcasts()
        await bot.session.close()
        await engine.dispose()
        logger.info("Stopped.")


if __name__ == "__main__":
    asyncio.run(main())
