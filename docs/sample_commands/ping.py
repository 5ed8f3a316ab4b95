"""Reply with the gateway latency."""

from cinder import SlashCommand


async def _handler(interaction, client):
    await interaction.reply(f"Pong! {round(client.latency * 1000)}ms")


COMMAND = SlashCommand(
    name="ping",
    description="Check that the bot is responsive.",
    handler=_handler,
    aliases=["latency"],
)
