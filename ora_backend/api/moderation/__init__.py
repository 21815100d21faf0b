# ora_backend/api/moderation/__init__.py
