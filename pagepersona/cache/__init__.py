from pagepersona.cache.transform_cache import ResultCache, Source

__all__ = ["ResultCache", "Source"]
