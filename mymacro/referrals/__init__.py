# -*- coding: utf-8 -*-
"""Referrals domain (codes, invitations, friends).

Each user's ledger lives in their own key-value namespace; the
`referral_codes` directory is the only state shared between users.
"""

from .directory import MemoryReferrerDirectory, ReferrerDirectory, SqliteReferrerDirectory
from .ledger import ReferralLedger

__all__ = ["MemoryReferrerDirectory", "ReferralLedger", "ReferrerDirectory", "SqliteReferrerDirectory"]
