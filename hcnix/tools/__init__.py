"""Host-side tools: subprocess runner, activation, manage.py helper."""
