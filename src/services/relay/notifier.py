# src/services/relay/notifier.py
"""
Исходящие вызовы Telegram Bot API.

Ответ на WebApp Query и сообщение администратору.
Ошибки Bot API не пробрасываются: они превращаются в NotifyResult.failed.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from aiogram import Bot
from aiogram.client.session.aiohttp import AiohttpSession
from aiogram.exceptions import TelegramAPIError
from aiogram.types import InlineQueryResultArticle, InputTextMessageContent

from src.common.constants import DeliveryStatus, TypeMsg
from src.common.logger import log_error, log_info, log_warning

# Лимит Telegram на длину текста сообщения 4096, запас под заголовок
PAYLOAD_TEXT_LIMIT = 3800

ANSWER_PREFIX = "✅ Получены данные из Mini App:\n"
ADMIN_PREFIX = "Получены данные от WebApp без queryId:\n"


@dataclass(frozen=True)
class NotifyResult:
    """Результат исходящего вызова."""
    status: DeliveryStatus
    reason: str | None = None
    response: dict[str, Any] | None = None

    @property
    def delivered(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED

    @classmethod
    def ok(cls, response: dict[str, Any] | None = None) -> "NotifyResult":
        return cls(status=DeliveryStatus.DELIVERED, response=response)

    @classmethod
    def failed(cls, reason: str) -> "NotifyResult":
        return cls(status=DeliveryStatus.FAILED, reason=reason)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "reason": self.reason,
            "response": self.response,
        }


def format_payload(payload: dict[str, Any], prefix: str) -> str:
    """Текст сообщения с JSON-представлением payload."""
    body = json.dumps(payload, ensure_ascii=False, indent=2, default=str)
    return prefix + body[:PAYLOAD_TEXT_LIMIT]


class Notifier(ABC):
    """Интерфейс отправки сообщений через бота."""

    @abstractmethod
    async def answer_web_app_query(
        self,
        query_id: str,
        result_id: str,
        payload: dict[str, Any],
    ) -> NotifyResult:
        """Ответить на WebApp Query от Mini App."""

    @abstractmethod
    async def send_message(self, chat_id: int | str, text: str) -> NotifyResult:
        """Отправить текстовое сообщение."""

    @abstractmethod
    async def get_me(self) -> str | None:
        """Username бота или None, если получить не удалось."""

    async def close(self) -> None:
        """Освободить ресурсы."""
        return None


class TelegramNotifier(Notifier):
    """
    Реализация через aiogram Bot.

    Bot создаётся лениво при первом вызове: без BOT_TOKEN приложение
    продолжает работать, а вызовы возвращают failed.
    """

    def __init__(
        self,
        token: str,
        *,
        request_timeout: float = 10.0,
        answer_title: str = "Данные из Mini App",
    ) -> None:
        self._token = token
        self._timeout = request_timeout
        self._answer_title = answer_title
        self._bot: Bot | None = None

    @property
    def configured(self) -> bool:
        return bool(self._token)

    def _get_bot(self) -> Bot:
        if self._bot is None:
            session = AiohttpSession(timeout=self._timeout)
            self._bot = Bot(token=self._token, session=session)
        return self._bot

    async def answer_web_app_query(
        self,
        query_id: str,
        result_id: str,
        payload: dict[str, Any],
    ) -> NotifyResult:
        if not self.configured:
            return NotifyResult.failed("BOT_TOKEN не задан")

        result = InlineQueryResultArticle(
            id=str(result_id),
            title=self._answer_title,
            input_message_content=InputTextMessageContent(
                message_text=format_payload(payload, ANSWER_PREFIX),
            ),
        )
        try:
            sent = await self._get_bot().answer_web_app_query(
                web_app_query_id=query_id,
                result=result,
            )
        except TelegramAPIError as e:
            await log_error(f"[Notifier] answerWebAppQuery отклонён: {e}")
            return NotifyResult.failed(str(e))
        except Exception as e:
            await log_error(
                f"[Notifier] Ошибка вызова answerWebAppQuery: {e!r}",
                exc_info=True,
            )
            return NotifyResult.failed(repr(e))

        await log_info(f"[Notifier] Ответ на WebApp Query {query_id} отправлен", type_msg=TypeMsg.DEBUG)
        return NotifyResult.ok(sent.model_dump(exclude_none=True) if sent else None)

    async def send_message(self, chat_id: int | str, text: str) -> NotifyResult:
        if not self.configured:
            return NotifyResult.failed("BOT_TOKEN не задан")

        try:
            message = await self._get_bot().send_message(chat_id=chat_id, text=text)
        except TelegramAPIError as e:
            await log_error(f"[Notifier] sendMessage в {chat_id} отклонён: {e}")
            return NotifyResult.failed(str(e))
        except Exception as e:
            await log_error(
                f"[Notifier] Ошибка вызова sendMessage: {e!r}",
                exc_info=True,
            )
            return NotifyResult.failed(repr(e))

        return NotifyResult.ok({"message_id": message.message_id, "chat_id": chat_id})

    async def get_me(self) -> str | None:
        if not self.configured:
            return None
        try:
            me = await self._get_bot().get_me()
        except TelegramAPIError as e:
            await log_warning(f"[Notifier] getMe отклонён: {e}")
            return None
        except Exception as e:
            await log_warning(f"[Notifier] Ошибка вызова getMe: {e!r}")
            return None
        return me.username

    async def close(self) -> None:
        if self._bot is not None:
            await self._bot.session.close()
            self._bot = None
