"""
Structural analysis of a single source file.

The tree-sitter grammar for the file's language is walked once in source
order; names are reported once each, in the order they first appear.
"""
from typing import Any, Callable, Optional

from crosstool.core.models import AnalysisResult
from .ast_engine import get_engine, language_for_file

_JS_FUNCTION_VALUES = {
    "arrow_function", "function", "function_expression",
    "generator_function", "generator_function_expression",
}
_JS_FUNCTION_DECLS = {"function_declaration", "generator_function_declaration", "function_signature"}
_JS_CLASS_NODES = {"class_declaration", "abstract_class_declaration", "class"}
_JS_BRANCHES = {
    "if_statement", "else_clause", "while_statement", "do_statement",
    "for_statement", "for_in_statement", "switch_case", "catch_clause",
    "ternary_expression",
}
_PY_BRANCHES = {
    "if_statement", "elif_clause", "else_clause", "while_statement",
    "for_statement", "except_clause", "conditional_expression", "boolean_operator",
    "case_clause",
}
_LOGICAL_OPERATORS = {"&&", "||", "??"}


class _Collector:
    def __init__(self, source: bytes):
        self.source = source
        self.functions: list[str] = []
        self.classes: list[str] = []
        self.variables: list[str] = []
        self.dependencies: list[str] = []
        self.branches = 0

    def text(self, node: Any) -> str:
        return self.source[node.start_byte:node.end_byte].decode("utf-8", errors="ignore")

    @staticmethod
    def _add(target: list[str], value: Optional[str]) -> None:
        if value and value not in target:
            target.append(value)

    def function(self, name: Optional[str]) -> None:
        self._add(self.functions, name)

    def klass(self, name: Optional[str]) -> None:
        self._add(self.classes, name)

    def variable(self, name: Optional[str]) -> None:
        self._add(self.variables, name)

    def dependency(self, name: Optional[str]) -> None:
        self._add(self.dependencies, name)

    def result(self, file_name: str, lines: int) -> AnalysisResult:
        # A name bound to a function expression is a function, not a variable.
        variables = [v for v in self.variables if v not in self.functions]
        return AnalysisResult(
            file_name=file_name,
            functions=self.functions,
            classes=self.classes,
            variables=variables,
            dependencies=self.dependencies,
            complexity=max(1, self.branches),
            lines=lines,
        )


def _walk(root: Any, visit: Callable[[Any], None]) -> None:
    stack = [root]
    while stack:
        node = stack.pop()
        visit(node)
        stack.extend(reversed(node.children))


def _strip_quotes(text: str) -> str:
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "'\"`":
        return text[1:-1]
    return text


def _pattern_names(c: _Collector, node: Any) -> list[str]:
    if node.type in ("identifier", "shorthand_property_identifier_pattern"):
        return [c.text(node)]
    out: list[str] = []
    for child in node.named_children:
        if child.type == "pair_pattern":
            value = child.child_by_field_name("value")
            if value is not None:
                out.extend(_pattern_names(c, value))
            continue
        if child.type == "assignment_pattern":
            left = child.child_by_field_name("left")
            if left is not None:
                out.extend(_pattern_names(c, left))
            continue
        out.extend(_pattern_names(c, child))
    return out


def _visit_js(c: _Collector, node: Any) -> None:
    if not node.is_named:
        return
    kind = node.type
    if kind in _JS_FUNCTION_DECLS or kind == "method_definition":
        name = node.child_by_field_name("name")
        if name is not None:
            c.function(c.text(name))
    elif kind in _JS_CLASS_NODES:
        name = node.child_by_field_name("name")
        if name is not None:
            c.klass(c.text(name))
    elif kind == "variable_declarator":
        name = node.child_by_field_name("name")
        value = node.child_by_field_name("value")
        if name is None:
            return
        if name.type == "identifier" and value is not None and value.type in _JS_FUNCTION_VALUES:
            c.function(c.text(name))
        for ident in _pattern_names(c, name):
            c.variable(ident)
    elif kind == "pair":
        key = node.child_by_field_name("key")
        value = node.child_by_field_name("value")
        if key is not None and value is not None and value.type in _JS_FUNCTION_VALUES:
            c.function(_strip_quotes(c.text(key)))
    elif kind == "import_statement":
        source = node.child_by_field_name("source")
        if source is not None:
            c.dependency(_strip_quotes(c.text(source)))
    elif kind == "call_expression":
        fn = node.child_by_field_name("function")
        args = node.child_by_field_name("arguments")
        if fn is not None and args is not None and c.text(fn) == "require":
            first = args.named_children[0] if args.named_children else None
            if first is not None and first.type in ("string", "template_string"):
                c.dependency(_strip_quotes(c.text(first)))
    elif kind == "binary_expression":
        op = node.child_by_field_name("operator")
        if op is not None and op.type in _LOGICAL_OPERATORS:
            c.branches += 1
    if kind in _JS_BRANCHES:
        c.branches += 1


def _visit_py(c: _Collector, node: Any) -> None:
    if not node.is_named:
        return
    kind = node.type
    if kind == "function_definition":
        name = node.child_by_field_name("name")
        if name is not None:
            c.function(c.text(name))
    elif kind == "class_definition":
        name = node.child_by_field_name("name")
        if name is not None:
            c.klass(c.text(name))
    elif kind == "assignment":
        left = node.child_by_field_name("left")
        right = node.child_by_field_name("right")
        if left is None:
            return
        if left.type == "identifier" and right is not None and right.type == "lambda":
            c.function(c.text(left))
        if left.type == "identifier":
            c.variable(c.text(left))
        elif left.type in ("pattern_list", "tuple_pattern", "list_pattern"):
            for child in left.named_children:
                if child.type == "identifier":
                    c.variable(c.text(child))
    elif kind == "import_statement":
        for child in node.named_children:
            if child.type == "dotted_name":
                c.dependency(c.text(child))
            elif child.type == "aliased_import":
                name = child.child_by_field_name("name")
                if name is not None:
                    c.dependency(c.text(name))
    elif kind == "import_from_statement":
        module = node.child_by_field_name("module_name")
        if module is not None:
            c.dependency(c.text(module))
    if kind in _PY_BRANCHES:
        c.branches += 1


def analyze_code(code: str, file_name: Optional[str] = None) -> AnalysisResult:
    """Report functions, classes, variables, dependencies and branch complexity."""
    code = code or ""
    name = file_name or "unknown"
    language = language_for_file(file_name)
    source = code.encode("utf-8", errors="ignore")
    tree = get_engine().parse(language, code)
    collector = _Collector(source)
    visit = _visit_py if language == "python" else _visit_js
    _walk(tree.root_node, lambda n: visit(collector, n))
    return collector.result(name, len(code.split("\n")))
