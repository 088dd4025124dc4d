# -*- coding: utf-8 -*-
"""MyMacro backend: referral ledger and chat widgets."""
