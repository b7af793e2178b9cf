"""Admin portal backend: notification triggers, throttling and push delivery."""
