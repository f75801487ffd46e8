"""
Status Timer Interfaces Layer
==============================

Interface adapters (controllers) for the status timer module.

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from status_timer.interfaces.controllers import router as status_timer_router

__all__ = ["status_timer_router"]
