# accountlink HTTP API layer
# Created: 2026-10-19
#
# Thin FastAPI routes over accountlink.linking.flow, mounted at /api/v1/.
