from __future__ import annotations

from typing import Protocol

from telegram import Bot

from report_agent.report_core.export import Artifact


class DocumentDelivery(Protocol):
    async def send_document(self, chat_id: int, artifact: Artifact, caption: str) -> None:
        ...

    async def send_message(self, chat_id: int, text: str) -> None:
        ...


class TelegramDelivery:
    def __init__(self, bot: Bot) -> None:
        self.bot = bot

    async def send_document(self, chat_id: int, artifact: Artifact, caption: str) -> None:
        await self.bot.send_document(
            chat_id=chat_id,
            document=artifact.path,
            filename=artifact.filename,
            caption=caption,
        )

    async def send_message(self, chat_id: int, text: str) -> None:
        await self.bot.send_message(chat_id=chat_id, text=text)
