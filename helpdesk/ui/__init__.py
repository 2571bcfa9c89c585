"""Server-rendered dashboard for helpdesk staff."""
