import logging

from app.infra.store.base import HelpChatStore
from app.services.assignment_policy import HelpChatSettingsService

logger = logging.getLogger(__name__)

DEFAULT_SUPPORT_AGENTS: list[dict[str, str | int | None]] = [
    {
        "name": "Sarah Mitchell",
        "avatar_url": None,
        "role": "Customer Success",
        "sort_order": 1,
    },
    {
        "name": "David Okafor",
        "avatar_url": None,
        "role": "Technical Support",
        "sort_order": 2,
    },
    {
        "name": "Priya Raman",
        "avatar_url": None,
        "role": "Billing Support",
        "sort_order": 3,
    },
]


async def seed_default_support_agents(store: HelpChatStore) -> int:
    existing = await store.list_agents()
    existing_names = {agent.name.strip().lower() for agent in existing}

    created = 0
    for item in DEFAULT_SUPPORT_AGENTS:
        name = str(item["name"]).strip()
        if name.lower() in existing_names:
            continue

        await store.create_agent(
            name=name,
            avatar_url=item["avatar_url"],
            role=item["role"],
            is_active=True,
            sort_order=int(item["sort_order"]),
        )
        created += 1
    return created


async def seed_help_chat_defaults(
    store: HelpChatStore,
    settings: HelpChatSettingsService,
) -> None:
    created = await seed_default_support_agents(store)
    await settings.seed_defaults()
    if created:
        logger.info("Seeded %s default support agents", created)
