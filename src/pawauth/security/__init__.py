# Audit logging and rate limiting.
