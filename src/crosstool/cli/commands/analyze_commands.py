"""
Local source commands: analysis and in-place formatting.
"""

import json
import os
import sys

from crosstool.core.parsers import analyze_code, format_code
from crosstool.core.utils.file import read_text_file, validate_file_path, write_text_file


def cmd_analyze(args) -> int:
    file_path = validate_file_path(getattr(args, "path", None), "analyze")
    code = read_text_file(file_path)
    result = analyze_code(code, os.path.basename(file_path))
    print(json.dumps(result.to_json(), indent=2))
    return 0


def cmd_format(args) -> int:
    file_path = validate_file_path(getattr(args, "path", None), "format")
    code = read_text_file(file_path)
    file_name = os.path.basename(file_path)
    formatted = format_code(code)
    if formatted != code:
        write_text_file(file_path, formatted)
        print(f"File '{file_name}' has been formatted", file=sys.stderr)
    else:
        print(f"File '{file_name}' is already properly formatted", file=sys.stderr)
    return 0
