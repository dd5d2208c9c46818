import logging
from typing import Any, Optional

from tree_sitter import Language, Parser

_EXTENSION_LANGUAGES = {
    "js": "javascript", "jsx": "javascript", "mjs": "javascript", "cjs": "javascript",
    "ts": "typescript", "mts": "typescript", "cts": "typescript",
    "tsx": "tsx",
    "py": "python", "pyi": "python",
}

DEFAULT_LANGUAGE = "javascript"


def language_for_file(file_name: Optional[str]) -> str:
    name = str(file_name or "")
    ext = name.rsplit(".", 1)[-1].lower() if "." in name else ""
    return _EXTENSION_LANGUAGES.get(ext, DEFAULT_LANGUAGE)


class ASTEngine:
    def __init__(self):
        self.logger = logging.getLogger("crosstool.ast")
        self._languages: dict[str, Language] = {}

    def get_language(self, name: str) -> Language:
        target = _EXTENSION_LANGUAGES.get(name.lower(), name.lower())
        cached = self._languages.get(target)
        if cached is not None:
            return cached
        if target == "javascript":
            import tree_sitter_javascript
            lang = Language(tree_sitter_javascript.language())
        elif target == "typescript":
            import tree_sitter_typescript
            lang = Language(tree_sitter_typescript.language_typescript())
        elif target == "tsx":
            import tree_sitter_typescript
            lang = Language(tree_sitter_typescript.language_tsx())
        elif target == "python":
            import tree_sitter_python
            lang = Language(tree_sitter_python.language())
        else:
            raise ValueError(f"Unsupported language: {name}")
        self._languages[target] = lang
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug("Loaded tree-sitter grammar %s", target)
        return lang

    def parse(self, language: str, content: str) -> Any:
        # Parser instances are not shared between calls; the server may
        # analyze from several threads.
        parser = Parser(self.get_language(language))
        return parser.parse(content.encode("utf-8", errors="ignore"))


_engine: Optional[ASTEngine] = None


def get_engine() -> ASTEngine:
    global _engine
    if _engine is None:
        _engine = ASTEngine()
    return _engine
