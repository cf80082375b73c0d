"""Session lifecycle: token refresh, session state machine and verification gate."""
