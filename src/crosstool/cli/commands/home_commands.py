"""
`home` command: direct access to the local item store, no server involved.
"""

import os

from crosstool.core.db import ItemStore, create_item_store
from crosstool.core.settings import Settings


def _print_items(store: ItemStore) -> None:
    items = store.list_items()
    print("Listing items from database:")
    if not items:
        print("No items found. Use --init to initialize the database.")
        return
    print("ID | Name | Created At")
    print("-" * 50)
    for item in items:
        print(f"{item.id} | {item.name} | {item.created_at}")


def _print_info(store: ItemStore, cfg: Settings) -> None:
    print("Home - item store")
    print("-" * 30)
    print(f"Application directory: {os.path.expanduser(cfg.APP_DIR)}")
    print(f"Database path: {store.path}")
    print(f"Storage backend: {store.backend}{'' if store.persistent else ' (not persistent)'}")
    if store.is_initialized():
        print("Database status: Initialized")
        print("Available commands:")
        print("  --list: List all items")
        print("  --add <item>: Add a new item")
        print("  --remove <id>: Remove an item")
        print("  --update <id> <name>: Rename an item")
        print("  --clear: Remove all items")
    else:
        print("Database status: Not initialized")
        print("Run with --init to initialize the database")


def cmd_home(args) -> int:
    cfg = Settings()
    store = create_item_store(cfg)
    try:
        if args.init:
            print("Initializing database...")
            result = store.initialize(seed=True)
            print(result.message)
        elif args.list:
            _print_items(store)
        elif args.add is not None:
            print(f'Adding new item: "{args.add}"')
            print(store.add_item(args.add).message)
        elif args.remove is not None:
            print(f"Removing item with ID: {args.remove}")
            print(store.delete_item(args.remove).message)
        elif args.update is not None:
            item_id, name = args.update
            print(f'Updating item {item_id} to: "{name}"')
            print(store.update_item(item_id, name).message)
        elif args.clear:
            print("Clearing all items from the database...")
            print(store.clear().message)
        else:
            _print_info(store, cfg)
    finally:
        store.close()
    return 0
