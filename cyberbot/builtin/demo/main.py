"""Example plugin: a few canned replies."""

from loguru import logger

from cyberbot.adapter import segments
from cyberbot.plugins import define_plugin

HITOKOTO_URL = "https://v1.hitokoto.cn/"


async def setup(ctx):
    async def on_message(e):
        text = e.get("raw_message", "")
        if text == "hello":
            # quote=True replies to the original message
            await e.reply("world", True)
        elif text == "love":
            await e.reply(["Love you ", segments.face(66)])
        elif text == "hitokoto":
            async with ctx.http() as client:
                response = await client.get(HITOKOTO_URL)
                response.raise_for_status()
            await e.reply(response.json().get("hitokoto", ""), True)

    async def on_group_message(e):
        if e.get("raw_message") == "group":
            await e.reply("This is a group message")

    async def on_private_message(e):
        if e.get("raw_message") == "private":
            await e.reply("This is a private message")

    async def on_request(e):
        logger.debug(f"demo received request: {e.to_dict()}")

    ctx.handle("message", on_message)
    ctx.handle("message.group", on_group_message)
    ctx.handle("message.private", on_private_message)
    ctx.handle("request", on_request)


plugin = define_plugin("demo", setup, version="1.0.0", description="Example replies")
