"""Owner-only shutdown, published to the staging guild only."""

from cinder import CommandOption, CommandScope, SlashCommand


async def _handler(interaction, client):
    await interaction.reply("Shutting down the bot...", ephemeral=True)
    await client.close()


COMMAND = SlashCommand(
    name="shutdown",
    description="Shuts down the bot.",
    handler=_handler,
    options=[
        CommandOption(
            name="password",
            description="The password to shut down the bot.",
            required=True,
        ),
    ],
    scope=CommandScope.RESTRICTED,
)
