# ora_backend/api/promotions/__init__.py
