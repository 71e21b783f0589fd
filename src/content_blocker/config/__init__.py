from .loader import ConfigLoader
from .schema import Config, FilterConfig, compile_span_pattern

__all__ = ["Config", "ConfigLoader", "FilterConfig", "compile_span_pattern"]
