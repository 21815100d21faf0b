# ora_backend/services/__init__.py
