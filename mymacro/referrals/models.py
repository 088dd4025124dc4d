# -*- coding: utf-8 -*-
"""Referrals — Pydantic models."""

from __future__ import annotations

from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class ReferralStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    EXPIRED = "expired"
    INVALID = "invalid"


class ReferralCode(BaseModel):
    code: str
    user_id: str
    share_link: str
    total_referrals: int = 0
    successful_referrals: int = 0
    total_credits_earned: float = 0


class Referral(BaseModel):
    id: str
    referrer_id: str
    referrer_code: str
    referred_name: Optional[str] = None
    referred_email: Optional[str] = None
    status: ReferralStatus = ReferralStatus.PENDING
    created_at: str
    verified_at: Optional[str] = None
    credit_applied: bool = False
    nudge_count: int = 0
    last_nudge_at: Optional[str] = None


class Friend(BaseModel):
    id: str
    user_id: str
    name: str
    avatar: Optional[str] = None
    score: int = 0
    streak: int = 0
    added_at: str
    status: Literal["active", "pending"] = "active"


class ValidationResult(BaseModel):
    valid: bool
    reason: Optional[str] = None
    referrer_id: Optional[str] = None


class RedeemResult(BaseModel):
    success: bool
    credit_amount: Optional[float] = None
    error: Optional[str] = None


class AddFriendResult(BaseModel):
    success: bool
    friend: Optional[Friend] = None
    error: Optional[str] = None


class ReferralStats(BaseModel):
    pending: int = Field(0, ge=0)
    verified: int = Field(0, ge=0)
    total_credits: float = Field(0, ge=0)
    friends: int = Field(0, ge=0)


# ---- HTTP payloads ----


class CodeRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)


class PendingReferralCreateRequest(BaseModel):
    referred_name: str = Field(..., min_length=1, max_length=64)
    referred_email: Optional[str] = Field(default=None, max_length=254)


class ReferralListResponse(BaseModel):
    count: int
    items: List[Referral]


class FriendListResponse(BaseModel):
    count: int
    items: List[Friend]


class ShareMessageResponse(BaseModel):
    code: str
    message: str


class IntegrityResponse(BaseModel):
    ok: bool
    corrupt_keys: List[str]
