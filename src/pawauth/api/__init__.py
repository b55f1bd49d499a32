# PawAuth HTTP layer.
# Created: 2026-03-05
#
# FastAPI app factory, shared dependencies and the versionless protocol routes
# (/oauth/*) plus client administration (/admin/oauth/*).
