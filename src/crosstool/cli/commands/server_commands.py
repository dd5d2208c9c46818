from crosstool.core.db import create_item_store
from crosstool.core.http_server import serve
from crosstool.core.settings import Settings
from crosstool.core.utils.net import enforce_loopback


def cmd_server(args) -> int:
    overrides = {}
    if getattr(args, "host", None):
        overrides["HOST"] = args.host
    if getattr(args, "port", None) is not None:
        overrides["PORT"] = args.port
    cfg = Settings(**overrides)
    enforce_loopback(cfg.HOST)
    store = create_item_store(cfg)
    return serve(cfg.HOST, int(cfg.PORT), store, allowed_tokens=cfg.allowed_tokens)
