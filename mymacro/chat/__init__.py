# -*- coding: utf-8 -*-
"""Chat domain: widget blocks embedded in assistant replies."""
