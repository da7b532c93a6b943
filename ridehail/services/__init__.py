# ridehail/services/__init__.py
"""
HTTP-сервисы поверх доменного слоя.
"""
