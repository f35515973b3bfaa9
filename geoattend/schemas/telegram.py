"""Pydantic models for the subset of Telegram webhook updates the bot reads."""

from __future__ import annotations

from pydantic import BaseModel, Field


class _TelegramModel(BaseModel):
    model_config = {"populate_by_name": True, "extra": "ignore"}


class TelegramUser(_TelegramModel):
    id: int
    first_name: str = ""
    last_name: str | None = None
    username: str | None = None


class TelegramChat(_TelegramModel):
    id: int


class TelegramLocation(_TelegramModel):
    latitude: float
    longitude: float


class TelegramContact(_TelegramModel):
    phone_number: str
    first_name: str
    last_name: str | None = None
    user_id: int | None = None


class TelegramMessage(_TelegramModel):
    message_id: int
    date: int | None = None
    chat: TelegramChat
    from_: TelegramUser | None = Field(default=None, alias="from")
    text: str | None = None
    location: TelegramLocation | None = None
    contact: TelegramContact | None = None


class TelegramCallbackQuery(_TelegramModel):
    id: str
    from_: TelegramUser = Field(alias="from")
    data: str | None = None
    message: TelegramMessage | None = None


class TelegramUpdate(_TelegramModel):
    update_id: int
    message: TelegramMessage | None = None
    callback_query: TelegramCallbackQuery | None = None
