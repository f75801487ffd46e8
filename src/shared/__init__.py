"""
Shared Kernel Module
====================

This module contains shared infrastructure used across all bounded contexts
(Status Timer and Campaigns).

Architecture Pattern: Modular Monolith
- Each module (status_timer, campaigns) is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add tracking or campaign business logic to the shared kernel.
"""

__version__ = "1.0.0"
