"""Connection, polling, stop-policy and run-recording services."""
