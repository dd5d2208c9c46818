"""
`client` command: drive the supervised shared server.

Every operation goes through the supervisor, so the server is launched on
demand or an already running one is adopted.
"""

import json

from crosstool.client import CrossToolClient
from crosstool.core.settings import Settings
from crosstool.core.utils.file import read_text_file, validate_file_path


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _client_for(args) -> CrossToolClient:
    overrides = {}
    if getattr(args, "host", None):
        overrides["HOST"] = args.host
    if getattr(args, "port", None) is not None:
        overrides["PORT"] = args.port
    return CrossToolClient.from_settings(Settings(**overrides))


def _dump(result) -> object:
    return result.model_dump(by_alias=True, exclude_none=True)


def _run(client: CrossToolClient, args) -> object:
    op = args.client_command
    if op == "status":
        info = client.server_info()
        return {"supervisor": client.status(), "server": info}
    if op == "init":
        return _dump(client.initialize_database(seed=args.seed))
    if op == "list":
        return [_dump(item) for item in client.list_items()]
    if op == "add":
        return _dump(client.add_item(args.name))
    if op == "update":
        return _dump(client.update_item(args.id, args.name))
    if op == "delete":
        return _dump(client.delete_item(args.id))
    if op == "clear":
        return _dump(client.clear_database())
    if op == "details":
        details = client.get_item_details(args.id)
        return _dump(details) if details is not None else None
    if op == "duplicate":
        return _dump(client.duplicate_item(args.id))
    if op == "export":
        return [_dump(item) for item in client.export_items(args.output)]
    if op == "analyze":
        if args.inline:
            return _dump(client.analyze(code=read_text_file(validate_file_path(args.path, "analyze"))))
        return _dump(client.analyze(file_path=validate_file_path(args.path, "analyze")))
    if op == "format":
        file_path = validate_file_path(args.path, "format")
        return _dump(client.format_code(file_path=file_path, save_to_file=args.write))
    if op == "stop":
        stopped = client.supervisor.stop_server()
        return {"stopped": stopped}
    return None


def cmd_client(args) -> int:
    if not getattr(args, "client_command", None):
        print("usage: crosstool client {status,init,list,add,update,delete,clear,details,duplicate,export,analyze,format,stop}")
        return 1
    client = _client_for(args)
    try:
        payload = _run(client, args)
    finally:
        client.shutdown()
    _print_json(payload)
    return 0
