"""Leadflow: multi-tenant mail/calendar sync with lead classification and alerts."""
