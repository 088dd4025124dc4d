# -*- coding: utf-8 -*-
"""Auth domain (users, tokens)."""
