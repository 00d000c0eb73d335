"""CLI helper for managing objects in the R2 origin bucket."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from ..common.observability import configure_logging
from ..common.settings import FileProxySettings
from ..file_proxy.backends import ObjectStore, build_object_store
from ..file_proxy.errors import ObjectNotFoundError
from ..file_proxy.shaping import describe


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Manage objects in the file cache origin bucket")
    subparsers = parser.add_subparsers(dest="command", required=True)

    get_parser = subparsers.add_parser("get", help="Download an object")
    get_parser.add_argument("key", help="Object key")
    get_parser.add_argument("--output", "-o", help="Write to this path instead of stdout")

    put_parser = subparsers.add_parser("put", help="Upload a local file")
    put_parser.add_argument("path", help="Local file to upload")
    put_parser.add_argument("--key", help="Object key (defaults to the file name)")
    put_parser.add_argument("--content-type", help="Override the content type derived from the key")

    delete_parser = subparsers.add_parser("delete", help="Delete an object")
    delete_parser.add_argument("key", help="Object key")

    exists_parser = subparsers.add_parser("exists", help="Exit 0 if the object exists, 1 otherwise")
    exists_parser.add_argument("key", help="Object key")

    return parser.parse_args(argv)


async def run(args: argparse.Namespace, store: ObjectStore) -> int:
    try:
        if args.command == "get":
            try:
                data = await store.get_object(args.key)
            except ObjectNotFoundError:
                print(f"Object not found: {args.key}", file=sys.stderr)
                return 1
            if args.output:
                Path(args.output).write_bytes(data)
                print(f"Wrote {len(data)} bytes to {args.output}")
            else:
                sys.stdout.buffer.write(data)
                sys.stdout.buffer.flush()
            return 0

        if args.command == "put":
            source = Path(args.path)
            key = args.key or source.name
            data = source.read_bytes()
            content_type = args.content_type or describe(key).content_type
            await store.put_object(key, data, content_type)
            print(f"Uploaded {key} ({len(data)} bytes, {content_type})")
            return 0

        if args.command == "delete":
            await store.delete_object(args.key)
            print(f"Deleted {args.key}")
            return 0

        if args.command == "exists":
            exists = await store.object_exists(args.key)
            print("yes" if exists else "no")
            return 0 if exists else 1

        raise ValueError(f"unknown command: {args.command}")
    finally:
        await store.close()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = FileProxySettings()
    configure_logging("filecache.cli", settings.log_level)
    store = build_object_store(settings)
    sys.exit(asyncio.run(run(args, store)))


if __name__ == "__main__":
    main()
