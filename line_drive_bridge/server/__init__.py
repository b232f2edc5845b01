"""HTTP server for the LINE webhooks."""
