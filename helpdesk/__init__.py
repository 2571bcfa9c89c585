"""Helpdesk backend package."""
