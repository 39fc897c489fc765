"""Workflow automation engine.

Binds declarative triggers (events, cron schedules, webhooks, manual calls)
to condition sets and ordered action lists, runs them with retry/backoff and
keeps an in-memory execution history.
"""

__version__ = "0.1.0"
