# ora_backend/api/notifications/__init__.py
