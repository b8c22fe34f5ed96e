"""Telegram transport: long polling with python-telegram-bot."""
import logging
import re

from telegram import Message, Update
from telegram.constants import ParseMode
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from bridge.backends import AgentBackend
from bridge.config import TELEGRAM_BOT_TOKEN, TELEGRAM_MAX_TEXT
from bridge.context import BridgeContext

logger = logging.getLogger(__name__)

# "/new@my_bot" in group chats
_BOT_MENTION_RE = re.compile(r"^(/\w+)@\w+$")


class TelegramMessenger:
    def __init__(self, bot):
        self.bot = bot

    async def reply(self, message: Message, text: str):
        await message.reply_text(text)

    async def push(self, user_id: str, text: str):
        """Send Markdown first, falls back to plain text if parsing fails."""
        try:
            await self.bot.send_message(chat_id=int(user_id), text=text, parse_mode=ParseMode.MARKDOWN)
        except Exception:
            await self.bot.send_message(chat_id=int(user_id), text=text)


async def message_handler(update: Update, context: ContextTypes.DEFAULT_TYPE):
    message = update.effective_message
    if message is None or not message.text or update.effective_user is None:
        return

    bridge: BridgeContext = context.application.bot_data["bridge"]
    text = _BOT_MENTION_RE.sub(r"\1", message.text.strip())
    # Private chats only: the user id doubles as the push target
    bridge.router.on_text_message(str(update.effective_user.id), text, message)


async def _close_bridge(app: Application):
    await app.bot_data["bridge"].aclose()


def build_application(token: str = TELEGRAM_BOT_TOKEN, backend: AgentBackend | None = None) -> Application:
    app = Application.builder().token(token).post_shutdown(_close_bridge).build()
    messenger = TelegramMessenger(app.bot)
    app.bot_data["bridge"] = BridgeContext.build(messenger, backend=backend, chunk_limit=TELEGRAM_MAX_TEXT)
    app.add_handler(MessageHandler(filters.TEXT, message_handler))
    return app
