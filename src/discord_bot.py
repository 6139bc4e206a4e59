"""
rollcall Discord Bot

Maintains the Discord connection, registers the /event, /intel and /inactive
commands and owns the two background loops of the events engine (daily
template top-up and reminder delivery).
"""

import asyncio
import os
import sys
from typing import Optional

import asyncpg
import discord
from discord.ext import commands
from dotenv import load_dotenv

import analytics
from commands.checkin_commands import CheckinCommands
from commands.event_commands import EventCommands
from events import (
    ConfigurationError,
    DiscordDelivery,
    EventService,
    EventsConfig,
    EventStore,
    ReminderDispatcher,
    ReminderTickDriver,
    TopUpDriver,
)

load_dotenv()

import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("rollcall")


def require_env(name: str) -> str:
    """Read a required environment variable or raise ConfigurationError."""
    value = os.getenv(name, "").strip()
    if not value:
        raise ConfigurationError(f"{name} environment variable not set")
    return value


class EventsBot(commands.Bot):
    """Discord bot hosting the community events engine."""

    def __init__(self, database_url: str, config: Optional[EventsConfig] = None):
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True  # /inactive check compares check-ins against the member list

        super().__init__(command_prefix="!", intents=intents)

        self.database_url = database_url
        self.events_config = config or EventsConfig.from_env()
        self.db_pool: Optional[asyncpg.Pool] = None
        self.event_service: Optional[EventService] = None
        self.topup_driver: Optional[TopUpDriver] = None
        self.reminder_driver: Optional[ReminderTickDriver] = None
        self._ready_event = asyncio.Event()

    async def setup_hook(self):
        """Called when the bot is starting up."""
        config = self.events_config
        logger.info(
            f"Setup: reminders={list(config.default_lead_offsets)} "
            f"poll={config.reminder_poll_seconds}s slack={config.reminder_slack_seconds}s "
            f"EVENTS_CHANNEL_ID={'set' if config.events_channel_id else 'unset'} "
            f"INTEL_CHANNEL_ID={'set' if config.intel_channel_id else 'unset'}"
        )

        # A scheduler without a store is useless, so failures here abort startup
        self.db_pool = await asyncpg.create_pool(
            self.database_url, command_timeout=config.db_command_timeout
        )
        store = EventStore(self.db_pool)
        await store.init_schema()

        try:
            await analytics.configure(self.db_pool)
        except Exception as e:
            logger.warning(f"Analytics unavailable: {e}")

        self.event_service = EventService(store, config)
        await self.add_cog(EventCommands(self, self.event_service, config))
        await self.add_cog(CheckinCommands(self, self.event_service, config))
        synced = await self.tree.sync()
        logger.info(f"Synced {len(synced)} application command(s)")

        dispatcher = ReminderDispatcher(
            store, DiscordDelivery(self, timeout=config.delivery_timeout), config
        )
        self.reminder_driver = ReminderTickDriver(
            dispatcher, bot=self, interval=config.reminder_poll_seconds
        )
        self.topup_driver = TopUpDriver(
            store,
            self.event_service,
            bot=self,
            run_at=config.topup_time,
            run_on_start=config.topup_on_start,
        )
        self.reminder_driver.start()
        self.topup_driver.start()

    async def on_ready(self):
        """Called when the bot has connected to Discord."""
        logger.info(f"Logged in as {self.user} (ID: {self.user.id})")
        logger.info(f"Connected to {len(self.guilds)} guild(s)")
        self._ready_event.set()

    def is_ready(self) -> bool:
        """Check if the bot is ready."""
        return self._ready_event.is_set()

    async def wait_until_ready(self):
        """Wait until the bot is ready."""
        await self._ready_event.wait()

    async def close(self):
        """Stop the loops, let in-flight ticks finish, then release the pool."""
        drivers = [d for d in (self.reminder_driver, self.topup_driver) if d is not None]
        if drivers:
            await asyncio.gather(*(d.shutdown() for d in drivers))
        analytics.reset()
        if self.db_pool:
            await self.db_pool.close()
        await super().close()


async def main():
    """Run the bot."""
    try:
        token = require_env("DISCORD_BOT_TOKEN")
        database_url = require_env("DATABASE_URL")
    except ConfigurationError as e:
        logger.error(f"Refusing to start: {e}")
        sys.exit(1)

    bot = EventsBot(database_url)
    async with bot:
        await bot.start(token)


def run():
    """Console entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
