from __future__ import annotations

import argparse
import asyncio
import logging
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from .config import Config, ConfigError, load_config
from .errors import GiveawayError
from .manager import GiveawayManager
from .models import GiveawayEditOptions, GiveawayRerollOptions, GiveawayStartOptions
from .storage import GiveawayStorage

log = logging.getLogger(__name__)

ENV_PATH = Path(".env")
DURATION_RE = re.compile(r"(\d+)\s*([smhdw])", re.IGNORECASE)
DURATION_UNITS = {
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}


def _load_env_file(path: Path = ENV_PATH) -> None:
    if not path.exists():
        return
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return
    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        key = key.strip()
        if not key:
            continue
        value = value.strip()
        if value and value[0] == value[-1] and value.startswith(("'", '"')):
            value = value[1:-1]
        os.environ.setdefault(key, value)


def configure_logging(level: str) -> None:
    console_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_dir = Path("logs")
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_dir / "log.txt", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)


def parse_duration(value: str) -> timedelta:
    """Parse compact durations such as ``10m``, ``1h30m`` or ``2d``."""
    text = value.strip()
    matches = list(DURATION_RE.finditer(text))
    if not matches or DURATION_RE.sub("", text).strip():
        raise ValueError("Durations look like 30s, 10m, 1h30m, 2d or 1w.")
    total = timedelta(0)
    for match in matches:
        total += int(match.group(1)) * DURATION_UNITS[match.group(2).lower()]
    if total <= timedelta(0):
        raise ValueError("The duration must be longer than zero.")
    return total


class GiveawayBot(commands.Bot):
    def __init__(self, config: Config, storage: GiveawayStorage) -> None:
        intents = discord.Intents.default()

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            application_id=config.application_id,
        )
        self.config = config
        self.manager = GiveawayManager(self, config.manager, storage)

    async def setup_hook(self) -> None:
        await self.manager.load()
        self.manager.start_scheduler()
        await self.tree.sync()

    async def close(self) -> None:
        self.manager.stop_scheduler()
        await super().close()

    async def on_ready(self) -> None:
        log.info("Logged in as %s (%s)", self.user, getattr(self.user, "id", None))

    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        await self.manager.handle_reaction(payload, added=True)

    async def on_raw_reaction_remove(self, payload: discord.RawReactionActionEvent) -> None:
        await self.manager.handle_reaction(payload, added=False)


def build_bot(config_path: Path) -> GiveawayBot:
    _load_env_file()
    config = load_config(config_path)
    configure_logging(config.logging.level)
    return GiveawayBot(config, GiveawayStorage(config.storage_path))


def register_commands(bot: GiveawayBot) -> None:
    manager = bot.manager

    async def reply_error(interaction: discord.Interaction, message: str) -> None:
        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)

    @bot.tree.command(name="giveaway-start", description="Start a new giveaway.")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    @app_commands.describe(
        channel="Channel where the giveaway should be posted.",
        duration="How long the giveaway runs, e.g. 10m, 1h30m, 2d.",
        winners="Number of winners to draw.",
        prize="What the winners receive.",
        drop="Announce the giveaway as a drop.",
    )
    async def giveaway_start(
        interaction: discord.Interaction,
        channel: discord.TextChannel,
        duration: str,
        winners: app_commands.Range[int, 1, 100],
        prize: str,
        drop: bool = False,
    ) -> None:
        try:
            length = parse_duration(duration)
        except ValueError as exc:
            await reply_error(interaction, str(exc))
            return

        await interaction.response.defer(ephemeral=True)
        try:
            giveaway = await manager.start(
                channel,
                GiveawayStartOptions(
                    prize=prize,
                    time=length,
                    winner_count=winners,
                    hosted_by=interaction.user.mention,
                    is_drop=drop,
                ),
            )
        except GiveawayError as exc:
            await reply_error(interaction, str(exc))
            return
        await interaction.followup.send(
            f"Giveaway `{giveaway.message_id}` started in {channel.mention}.", ephemeral=True
        )

    @bot.tree.command(name="giveaway-end", description="End a giveaway immediately.")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    @app_commands.describe(message_id="Message ID of the giveaway announcement.")
    async def giveaway_end(interaction: discord.Interaction, message_id: str) -> None:
        await interaction.response.defer(ephemeral=True)
        try:
            winners = await manager.end(message_id)
        except GiveawayError as exc:
            await reply_error(interaction, str(exc))
            return
        await interaction.followup.send(
            f"Giveaway `{message_id}` ended with {len(winners)} winner(s).", ephemeral=True
        )

    @bot.tree.command(name="giveaway-edit", description="Edit a running giveaway.")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    @app_commands.describe(
        message_id="Message ID of the giveaway announcement.",
        winners="New number of winners.",
        prize="New prize.",
        add_time="Time to add, e.g. 10m. Prefix with - to shorten.",
    )
    async def giveaway_edit(
        interaction: discord.Interaction,
        message_id: str,
        winners: Optional[app_commands.Range[int, 1, 100]] = None,
        prize: Optional[str] = None,
        add_time: Optional[str] = None,
    ) -> None:
        extra: Optional[timedelta] = None
        if add_time:
            negative = add_time.strip().startswith("-")
            try:
                extra = parse_duration(add_time.strip().lstrip("-"))
            except ValueError as exc:
                await reply_error(interaction, str(exc))
                return
            if negative:
                extra = -extra

        await interaction.response.defer(ephemeral=True)
        try:
            await manager.edit(
                message_id,
                GiveawayEditOptions(new_winner_count=winners, new_prize=prize, add_time=extra),
            )
        except GiveawayError as exc:
            await reply_error(interaction, str(exc))
            return
        await interaction.followup.send(f"Giveaway `{message_id}` updated.", ephemeral=True)

    @bot.tree.command(name="giveaway-reroll", description="Draw new winners for an ended giveaway.")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    @app_commands.describe(
        message_id="Message ID of the giveaway announcement.",
        winners="How many winners to draw (defaults to the original count).",
    )
    async def giveaway_reroll(
        interaction: discord.Interaction,
        message_id: str,
        winners: Optional[app_commands.Range[int, 1, 100]] = None,
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        try:
            drawn = await manager.reroll(message_id, GiveawayRerollOptions(winner_count=winners))
        except GiveawayError as exc:
            await reply_error(interaction, str(exc))
            return
        await interaction.followup.send(
            f"Rerolled giveaway `{message_id}`: {len(drawn)} winner(s).", ephemeral=True
        )

    @bot.tree.command(name="giveaway-delete", description="Delete a giveaway.")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    @app_commands.describe(
        message_id="Message ID of the giveaway announcement.",
        keep_message="Keep the announcement message in the channel.",
    )
    async def giveaway_delete(
        interaction: discord.Interaction, message_id: str, keep_message: bool = False
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        try:
            await manager.delete(message_id, keep_message=keep_message)
        except GiveawayError as exc:
            await reply_error(interaction, str(exc))
            return
        await interaction.followup.send(f"Giveaway `{message_id}` deleted.", ephemeral=True)

    @bot.tree.command(name="giveaway-list", description="List the giveaways of this server.")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    async def giveaway_list(interaction: discord.Interaction) -> None:
        giveaways = manager.list_giveaways(interaction.guild_id)
        if not giveaways:
            await interaction.response.send_message("No giveaways found.", ephemeral=True)
            return
        lines = []
        for giveaway in giveaways:
            status = "ended" if giveaway.ended else giveaway.content
            lines.append(f"`{giveaway.message_id}` **{giveaway.data.prize}** ({status})")
        await interaction.response.send_message("\n".join(lines)[:2000], ephemeral=True)


async def main() -> None:
    parser = argparse.ArgumentParser(description="Discord Reaction Giveaway Bot")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config") / "config.yaml",
        help="Path to the bot configuration file.",
    )
    args = parser.parse_args()

    try:
        bot = build_bot(args.config)
    except ConfigError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc

    register_commands(bot)

    async with bot:
        await bot.start(bot.config.token)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
