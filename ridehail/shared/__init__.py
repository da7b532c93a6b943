# ridehail/shared/__init__.py
"""
Общие модели, разделяемые доменом и HTTP-границей.
"""
