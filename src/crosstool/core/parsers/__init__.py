from .analyzer import analyze_code
from .formatter import format_code

__all__ = ["analyze_code", "format_code"]
