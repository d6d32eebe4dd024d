"""Services for the recurring order engine. Services flush; callers commit."""
