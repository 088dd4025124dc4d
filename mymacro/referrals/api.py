# -*- coding: utf-8 -*-
"""Referrals — API endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..auth.security import get_current_user
from ..config import settings
from ..kv import SqliteKeyValueStore
from .directory import SqliteReferrerDirectory
from .ledger import ReferralLedger
from .models import (
    AddFriendResult,
    CodeRequest,
    FriendListResponse,
    IntegrityResponse,
    PendingReferralCreateRequest,
    RedeemResult,
    Referral,
    ReferralCode,
    ReferralListResponse,
    ReferralStats,
    ShareMessageResponse,
    ValidationResult,
)

router = APIRouter(prefix="/api/referrals", tags=["Referrals"])


def get_ledger(user: dict = Depends(get_current_user)) -> ReferralLedger:
    return ReferralLedger(
        SqliteKeyValueStore(settings.app_db_path, namespace=user["id"]),
        user_id=user["id"],
        display_name=user.get("display_name") or "",
        directory=SqliteReferrerDirectory(settings.app_db_path),
    )


@router.get("/code", response_model=ReferralCode, summary="Get (or create) the caller's referral code")
def get_code(ledger: ReferralLedger = Depends(get_ledger)):
    return ledger.get_or_create_code()


@router.post("/validate", response_model=ValidationResult, summary="Check whether a code can be redeemed")
async def validate_code(request: CodeRequest, ledger: ReferralLedger = Depends(get_ledger)):
    return await ledger.validate(request.code, ledger.user_id)


@router.post("/redeem", response_model=RedeemResult, summary="Redeem a friend's referral code")
async def redeem_code(request: CodeRequest, ledger: ReferralLedger = Depends(get_ledger)):
    return await ledger.redeem(request.code, ledger.user_id)


@router.get("/pending", response_model=ReferralListResponse, summary="List pending referrals")
def list_pending(ledger: ReferralLedger = Depends(get_ledger)):
    items = ledger.pending()
    return ReferralListResponse(count=len(items), items=items)


@router.post("/pending", response_model=Referral, summary="Record a shared invitation")
def create_pending(request: PendingReferralCreateRequest, ledger: ReferralLedger = Depends(get_ledger)):
    return ledger.create_pending(request.referred_name, request.referred_email)


@router.post("/pending/{referral_id}/nudge", summary="Log a reminder for a pending referral")
def nudge_pending(referral_id: str, ledger: ReferralLedger = Depends(get_ledger)):
    if not ledger.nudge(referral_id):
        raise HTTPException(status_code=404, detail="Referral not found")
    return {"status": "ok", "referral_id": referral_id}


@router.post("/pending/{referral_id}/verify", response_model=Referral, summary="Confirm a referral signup")
def verify_pending(referral_id: str, ledger: ReferralLedger = Depends(get_ledger)):
    referral = ledger.verify(referral_id)
    if referral is None:
        raise HTTPException(status_code=404, detail="Referral not found")
    return referral


@router.get("/verified", response_model=ReferralListResponse, summary="List verified referrals")
def list_verified(ledger: ReferralLedger = Depends(get_ledger)):
    items = ledger.verified()
    return ReferralListResponse(count=len(items), items=items)


@router.get("/friends", response_model=FriendListResponse, summary="List friends")
def list_friends(ledger: ReferralLedger = Depends(get_ledger)):
    items = ledger.friends()
    return FriendListResponse(count=len(items), items=items)


@router.post("/friends", response_model=AddFriendResult, summary="Add a friend by referral code")
async def add_friend(request: CodeRequest, ledger: ReferralLedger = Depends(get_ledger)):
    return await ledger.add_friend(request.code)


@router.delete("/friends/{friend_id}", summary="Remove a friend")
def remove_friend(friend_id: str, ledger: ReferralLedger = Depends(get_ledger)):
    if not ledger.remove_friend(friend_id):
        raise HTTPException(status_code=404, detail="Friend not found")
    return {"status": "ok", "friend_id": friend_id}


@router.get("/stats", response_model=ReferralStats, summary="Referral dashboard counters")
def stats(ledger: ReferralLedger = Depends(get_ledger)):
    return ledger.stats()


@router.get("/share-message", response_model=ShareMessageResponse, summary="Invitation text for sharing")
def share_message(
    code: Optional[str] = Query(default=None, description="Defaults to the caller's own code"),
    ledger: ReferralLedger = Depends(get_ledger),
):
    code = code or ledger.get_or_create_code().code
    return ShareMessageResponse(code=code, message=ledger.share_message(code, ledger.display_name))


@router.get("/integrity", response_model=IntegrityResponse, summary="Report unreadable ledger entries")
def integrity(ledger: ReferralLedger = Depends(get_ledger)):
    corrupt = ledger.integrity()
    return IntegrityResponse(ok=not corrupt, corrupt_keys=corrupt)
