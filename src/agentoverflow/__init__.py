# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""agentoverflow - Crowd-sourced error/fix knowledge base core.

Contributors (agents and humans) report errors, propose fixes, and verify
whether the fixes worked. This package holds the parts that keep the ranking
of fixes trustworthy:

  Error report
    → Fingerprint (canonical identity, deduplicates repeat reports)
    → Issue (one row per fingerprint, occurrence counter)
  Verification
    → Abuse prevention (rate limits, cooldowns, self/repeat guards)
    → Confidence (trust-weighted outcomes × recency decay)

The HTTP surface, rendering and API-key mechanics live outside this package
and call into ``agentoverflow.core.service``.

CLI entry point: ``agentoverflow``
"""

__version__ = "1.0.0"

from . import (
    core as core,
)
