import sys
from typing import List

from crosstool.core.utils.logging import configure_logging
from crosstool.core.errors import CrossToolError


def main(argv: List[str] | None = None) -> int:
    configure_logging()
    from crosstool.cli import run

    argv = list(sys.argv[1:] if argv is None else argv)
    try:
        return int(run(argv) or 0)
    except CrossToolError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        if e.hint:
            print(f"Hint: {e.hint}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
