from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from foundry.schemas.content import Url


class SubscribeRequest(BaseModel):
    email: EmailStr
    subscribeAll: Optional[bool] = None
    platformIds: Optional[list[str]] = None


class UnsubscribeRequest(BaseModel):
    email: Optional[str] = None


class ContactRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    subject: Optional[str] = Field(default=None, max_length=200)
    message: str = Field(min_length=1, max_length=5000)
    company: Optional[str] = Field(default=None, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=100)
    pageUrl: Optional[Url] = None


class EmailSendRequest(BaseModel):
    newsId: Optional[str] = None
    platformIds: Optional[list[str]] = None
    sendToAll: Optional[bool] = None
    subject: Optional[str] = None
    html: Optional[str] = None


class EmailSendResponse(BaseModel):
    ok: bool
    campaigns: list[str]
    total: int
    message: str


class EmailStatsResponse(BaseModel):
    active: int
    unsubscribed: int
    total: int
    totalSent: int
    totalFailed: int
    totalCampaigns: int
    lastSentAt: Optional[str] = None


class MediaSasRequest(BaseModel):
    filename: Optional[str] = None
    contentType: Optional[str] = None
