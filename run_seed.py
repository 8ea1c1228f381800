import asyncio
import logging

from app.core.config import get_settings
from app.core.db import close_engine, get_session_factory, init_engine
from app.core.logging import configure_logging
from app.infra.db.seed import seed_help_chat_defaults
from app.infra.store import SqlHelpChatStore
from app.services.assignment_policy import HelpChatSettingsService

logger = logging.getLogger("app.seed")


async def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)

    engine = init_engine()
    try:
        store = SqlHelpChatStore(get_session_factory())
        await seed_help_chat_defaults(
            store,
            HelpChatSettingsService(
                store, default_mode=settings.help_chat_default_assignment_mode
            ),
        )
        logger.info("Successfully loaded help chat defaults")
    finally:
        await close_engine(engine)


if __name__ == "__main__":
    asyncio.run(main())
