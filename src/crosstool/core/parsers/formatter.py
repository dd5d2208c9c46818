INDENT = "  "
_OPENERS = ("{", "[", "(")
_CLOSERS = ("}", "]", ")")


def format_code(code: str) -> str:
    """Re-indent brace-delimited source by nesting depth.

    A line starting with a closer is dedented before it is written; a line
    ending with an opener indents the lines after it. Blank lines are kept
    but emptied. Already well-indented input comes back unchanged.
    """
    level = 0
    out: list[str] = []
    for line in (code or "").split("\n"):
        stripped = line.strip()
        if not stripped:
            out.append("")
            continue
        if stripped.startswith(_CLOSERS):
            level = max(0, level - 1)
        out.append(INDENT * level + stripped)
        if stripped.endswith(_OPENERS):
            level += 1
    return "\n".join(out)
