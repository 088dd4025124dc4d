# -*- coding: utf-8 -*-
"""Referrals — per-user ledger of codes, referrals and friends.

The ledger keeps one user's referral state in an injected key-value store:

- `referral_code`        the user's own code (created lazily, never regenerated)
- `pending_referrals`    invitations not yet confirmed
- `verified_referrals`   confirmed invitations (credit applied)
- `friends_list`         friends added by code
- `used_referral_codes`  codes this user already redeemed (lower-cased)

Expected failures come back as result models (`ValidationResult`,
`RedeemResult`, `AddFriendResult`); unreadable stored values are logged and
treated as absent. Every mutation goes through the store's atomic update.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
import secrets
import string
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..config import settings
from ..kv import CorruptValueError, KeyValueStore
from .directory import ReferrerDirectory
from .models import (
    AddFriendResult,
    Friend,
    RedeemResult,
    Referral,
    ReferralCode,
    ReferralStats,
    ReferralStatus,
    ValidationResult,
)

logger = logging.getLogger(__name__)

REFERRAL_CODE_KEY = "referral_code"
PENDING_REFERRALS_KEY = "pending_referrals"
VERIFIED_REFERRALS_KEY = "verified_referrals"
FRIENDS_KEY = "friends_list"
USED_REFERRAL_CODES_KEY = "used_referral_codes"

LEDGER_KEYS = (
    REFERRAL_CODE_KEY,
    PENDING_REFERRALS_KEY,
    VERIFIED_REFERRALS_KEY,
    FRIENDS_KEY,
    USED_REFERRAL_CODES_KEY,
)

CODE_PATTERN = re.compile(r"^[a-z0-9]+-[A-Z0-9]{4}$", re.IGNORECASE | re.ASCII)

_SUFFIX_ALPHABET = string.digits + string.ascii_uppercase
_SUFFIX_LENGTH = 4
_NAME_MAX_LENGTH = 10
_FALLBACK_NAME = "user"
_MAX_CODE_ATTEMPTS = 10

M = TypeVar("M", bound=BaseModel)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def clean_display_name(display_name: str) -> str:
    """Lowercase, keep [a-z0-9] only, truncate to 10 characters."""
    return re.sub(r"[^a-z0-9]", "", (display_name or "").lower())[:_NAME_MAX_LENGTH]


def _random_suffix() -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(_SUFFIX_LENGTH))


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, list) else []


def _format_amount(amount: float) -> str:
    return f"{amount:g}"


class ReferralLedger:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        user_id: str,
        display_name: str,
        directory: Optional[ReferrerDirectory] = None,
        credit_amount: Optional[float] = None,
        share_base_url: Optional[str] = None,
        verify_delay: Optional[float] = None,
    ) -> None:
        self.store = store
        self.user_id = user_id
        self.display_name = display_name
        self.directory = directory
        self.credit_amount = float(settings.referral_credit if credit_amount is None else credit_amount)
        self.share_base_url = share_base_url or settings.share_base_url
        self.verify_delay = float(settings.referral_verify_delay if verify_delay is None else verify_delay)

    # ------------------------------------------------------------------
    # Codes
    # ------------------------------------------------------------------

    def generate_code(self, display_name: str, user_id: str) -> ReferralCode:
        """Create and persist a fresh `name-XXXX` code for `user_id`."""
        clean_name = clean_display_name(display_name) or _FALLBACK_NAME
        for _ in range(_MAX_CODE_ATTEMPTS):
            code = f"{clean_name}-{_random_suffix()}"
            if self.directory is None:
                break
            try:
                self.directory.register(code, user_id)
                break
            except ValueError:
                continue
        else:
            raise RuntimeError(f"Could not allocate a unique referral code for {clean_name!r}")

        referral_code = ReferralCode(
            code=code,
            user_id=user_id,
            share_link=f"{self.share_base_url}{clean_name}?ref={code}",
            total_referrals=0,
            successful_referrals=0,
            total_credits_earned=0,
        )
        self.store.set_json(REFERRAL_CODE_KEY, referral_code.model_dump(mode="json"))
        logger.info("Generated referral code %s for user %s", code, user_id)
        return referral_code

    def get_or_create_code(self, display_name: Optional[str] = None, user_id: Optional[str] = None) -> ReferralCode:
        existing = self._stored_code()
        if existing is not None:
            return existing
        return self.generate_code(
            self.display_name if display_name is None else display_name,
            self.user_id if user_id is None else user_id,
        )

    def _stored_code(self) -> Optional[ReferralCode]:
        raw = self._read(REFERRAL_CODE_KEY)
        if raw is None:
            return None
        try:
            return ReferralCode.model_validate(raw)
        except ValidationError:
            logger.warning("Stored referral code has an unexpected shape; ignoring it")
            return None

    # ------------------------------------------------------------------
    # Validation / redemption
    # ------------------------------------------------------------------

    async def validate(self, code: str, current_user_id: str) -> ValidationResult:
        code = (code or "").strip()
        if not CODE_PATTERN.match(code):
            return ValidationResult(valid=False, reason="Invalid code format")

        if code.lower() in self.used_codes():
            return ValidationResult(valid=False, reason="Code already used")

        own = self._stored_code()
        if own is not None and own.code.lower() == code.lower():
            return ValidationResult(valid=False, reason="Cannot use your own code")

        if self.verify_delay > 0:
            await asyncio.sleep(self.verify_delay)

        if self.directory is None:
            # No directory to ask: derive the referrer from the code itself.
            referrer_name = code.split("-", 1)[0].lower()
            return ValidationResult(valid=True, referrer_id=f"user_{referrer_name}")

        try:
            referrer_id = self.directory.lookup(code)
        except Exception:
            logger.exception("Referral code lookup failed for %s", code)
            return ValidationResult(valid=False, reason="Verification failed")

        if referrer_id is None:
            return ValidationResult(valid=False, reason="Code not found")
        if referrer_id == current_user_id:
            return ValidationResult(valid=False, reason="Cannot use your own code")
        return ValidationResult(valid=True, referrer_id=referrer_id)

    async def redeem(self, code: str, current_user_id: str) -> RedeemResult:
        validation = await self.validate(code, current_user_id)
        if not validation.valid:
            return RedeemResult(success=False, error=validation.reason)

        normalized = code.strip().lower()

        def _mark_used(current: Any):
            used = [c for c in _as_list(current) if isinstance(c, str)]
            if normalized in used:
                return None, False
            used.append(normalized)
            return used, True

        if not self.store.update_json(USED_REFERRAL_CODES_KEY, _mark_used, default=[]):
            return RedeemResult(success=False, error="Code already used")

        logger.info(
            "Referral code %s redeemed by user %s (referrer %s)",
            normalized,
            current_user_id,
            validation.referrer_id,
        )
        return RedeemResult(success=True, credit_amount=self.credit_amount)

    def used_codes(self) -> List[str]:
        return [c for c in _as_list(self._read(USED_REFERRAL_CODES_KEY)) if isinstance(c, str)]

    # ------------------------------------------------------------------
    # Pending / verified referrals
    # ------------------------------------------------------------------

    def create_pending(self, referred_name: str, referred_email: Optional[str] = None) -> Referral:
        own = self.get_or_create_code()
        referral = Referral(
            id=f"ref_{secrets.token_hex(6)}",
            referrer_id=own.user_id,
            referrer_code=own.code,
            referred_name=referred_name,
            referred_email=referred_email,
            status=ReferralStatus.PENDING,
            created_at=_utc_now(),
            credit_applied=False,
            nudge_count=0,
        )
        record = referral.model_dump(mode="json")
        self.store.update_json(PENDING_REFERRALS_KEY, lambda items: (_as_list(items) + [record], None), default=[])
        return referral

    def pending(self) -> List[Referral]:
        return self._read_models(PENDING_REFERRALS_KEY, Referral)

    def verified(self) -> List[Referral]:
        return self._read_models(VERIFIED_REFERRALS_KEY, Referral)

    def nudge(self, referral_id: str) -> bool:
        """Record a reminder for a pending referral. Nothing is sent from here."""
        now = _utc_now()

        def _bump(current: Any):
            items = _as_list(current)
            for item in items:
                if isinstance(item, dict) and item.get("id") == referral_id:
                    item["nudge_count"] = int(item.get("nudge_count") or 0) + 1
                    item["last_nudge_at"] = now
                    return items, True
            return None, False

        return bool(self.store.update_json(PENDING_REFERRALS_KEY, _bump, default=[]))

    def verify(self, referral_id: str) -> Optional[Referral]:
        """Move a pending referral to verified and mark its credit applied."""
        now = _utc_now()

        def _move(values: Dict[str, Any]):
            pending = _as_list(values[PENDING_REFERRALS_KEY])
            verified = _as_list(values[VERIFIED_REFERRALS_KEY])
            for index, item in enumerate(pending):
                if isinstance(item, dict) and item.get("id") == referral_id:
                    try:
                        referral = Referral.model_validate(
                            {
                                **item,
                                "status": ReferralStatus.VERIFIED.value,
                                "verified_at": now,
                                "credit_applied": True,
                            }
                        )
                    except ValidationError:
                        logger.warning("Pending referral %s is malformed; leaving it in place", referral_id)
                        return None, None
                    del pending[index]
                    verified.append(referral.model_dump(mode="json"))
                    return {PENDING_REFERRALS_KEY: pending, VERIFIED_REFERRALS_KEY: verified}, referral
            return None, None

        moved = self.store.update_many_json(
            [PENDING_REFERRALS_KEY, VERIFIED_REFERRALS_KEY],
            _move,
            {PENDING_REFERRALS_KEY: [], VERIFIED_REFERRALS_KEY: []},
        )
        if moved is None:
            return None
        logger.info("Referral %s verified for user %s", referral_id, self.user_id)
        return moved

    # ------------------------------------------------------------------
    # Friends
    # ------------------------------------------------------------------

    def friends(self) -> List[Friend]:
        return self._read_models(FRIENDS_KEY, Friend)

    async def add_friend(self, friend_code: str) -> AddFriendResult:
        validation = await self.validate(friend_code, self.user_id)
        if not validation.valid:
            return AddFriendResult(success=False, error=validation.reason)

        friend_name = friend_code.strip().split("-", 1)[0]
        # Score and streak are placeholders until friend activity is synced.
        friend = Friend(
            id=f"friend_{secrets.token_hex(6)}",
            user_id=validation.referrer_id or f"user_{friend_name.lower()}",
            name=friend_name[:1].upper() + friend_name[1:],
            score=random.randint(1000, 5999),
            streak=random.randint(0, 29),
            added_at=_utc_now(),
            status="active",
        )
        record = friend.model_dump(mode="json")
        self.store.update_json(FRIENDS_KEY, lambda items: (_as_list(items) + [record], None), default=[])
        return AddFriendResult(success=True, friend=friend)

    def remove_friend(self, friend_id: str) -> bool:
        def _remove(current: Any):
            items = _as_list(current)
            kept = [f for f in items if not (isinstance(f, dict) and f.get("id") == friend_id)]
            if len(kept) == len(items):
                return None, False
            return kept, True

        return bool(self.store.update_json(FRIENDS_KEY, _remove, default=[]))

    # ------------------------------------------------------------------
    # Sharing / dashboard
    # ------------------------------------------------------------------

    def share_message(self, code: str, display_name: str) -> str:
        link_name = clean_display_name(display_name) or _FALLBACK_NAME
        return (
            f"Join me on MyMacro AI and get ${_format_amount(self.credit_amount)} off! "
            f"Use my code: {code}\n\n{self.share_base_url}{link_name}?ref={code}"
        )

    def stats(self) -> ReferralStats:
        verified = self.verified()
        return ReferralStats(
            pending=len(self.pending()),
            verified=len(verified),
            total_credits=len(verified) * self.credit_amount,
            friends=len(self.friends()),
        )

    def integrity(self) -> List[str]:
        """Keys whose stored value exists but cannot be decoded."""
        corrupt: List[str] = []
        for key in LEDGER_KEYS:
            try:
                self.store.get_json(key)
            except CorruptValueError:
                corrupt.append(key)
        return corrupt

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _read(self, key: str) -> Any:
        try:
            return self.store.get_json(key)
        except CorruptValueError:
            logger.warning("Corrupt value under %s for user %s; treating as absent", key, self.user_id)
            return None

    def _read_models(self, key: str, model: Type[M]) -> List[M]:
        items: List[M] = []
        for raw in _as_list(self._read(key)):
            try:
                items.append(model.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping malformed %s entry under %s", model.__name__, key)
        return items
