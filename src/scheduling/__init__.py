"""Recurring schedules that spawn generation jobs."""
