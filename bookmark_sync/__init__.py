"""
Синхронизация закладок браузера с удаленным JSON-документом
и обогащение закладок описаниями и тегами от LLM.
"""

__version__ = "0.1.0"
