"""Command line interface for inspecting Microsoft Tape Format images."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import yaml

from .blocks import BlockReader
from .config import DecoderConfig, available_modes, config_from_env, get_decoder_config, load_config
from .constants import BlockType
from .errors import MTFError
from .image import MTFImage
from .page_provider import ReadStatus
from .resource_limits import ResourceBudgetExceeded


class CommandError(RuntimeError):
    """Raised when a CLI sub-command fails with a user facing error."""


def _config(args: argparse.Namespace) -> DecoderConfig:
    try:
        if args.config:
            return load_config(Path(args.config))
        if args.mode:
            return get_decoder_config(args.mode)
        return config_from_env()
    except OSError as exc:
        raise CommandError(f"Unable to read configuration '{args.config}': {exc}") from exc
    except (ValueError, yaml.YAMLError) as exc:
        raise CommandError(f"Invalid configuration: {exc}") from exc


def _open_image(args: argparse.Namespace) -> MTFImage:
    path = Path(args.image)
    if not path.exists():
        raise CommandError(f"Image '{path}' does not exist")
    try:
        return MTFImage.open(path, _config(args))
    except OSError as exc:
        raise CommandError(f"Unable to open '{path}': {exc}") from exc


def _emit(args: argparse.Namespace, payload: Any) -> bool:
    if getattr(args, "yaml", False):
        print(yaml.safe_dump(payload, sort_keys=False))
        return True
    if getattr(args, "json", False):
        print(json.dumps(payload, indent=2))
        return True
    return False


def _scan(reader: BlockReader) -> Iterator[Dict[str, Any]]:
    try:
        for block in reader:
            yield block.summary()
    except (MTFError, ResourceBudgetExceeded) as exc:
        raise CommandError(f"Decoding stopped at offset {reader.position}: {exc}") from exc


def _report_reader_issues(reader: BlockReader) -> None:
    for issue in reader.issues:
        print(f"warning: {issue.message}", file=sys.stderr)


def blocks_command(args: argparse.Namespace) -> None:
    with _open_image(args) as image:
        reader = image.reader(start=args.start)
        summaries = list(_scan(reader))
    if not _emit(args, {"blocks": summaries, "issues": [issue.as_dict() for issue in reader.issues]}):
        for summary in summaries:
            flags = []
            if summary["suspect"]:
                flags.append("suspect")
            if summary["abandoned"]:
                flags.append("abandoned")
            if summary["truncated"]:
                flags.append("truncated")
            streams = ",".join(stream["id"] for stream in summary["streams"])
            suffix = f"  [{' '.join(flags)}]" if flags else ""
            print(f"{summary['offset']:>12}  {summary['type']:<4}  {summary['size']:>10}  {streams}{suffix}")
    _report_reader_issues(reader)


def streams_command(args: argparse.Namespace) -> None:
    rows: List[Dict[str, Any]] = []
    with _open_image(args) as image:
        reader = image.reader()
        for summary in _scan(reader):
            for stream in summary["streams"]:
                if args.id and stream["id"] != args.id:
                    continue
                rows.append({"block_offset": summary["offset"], "block_type": summary["type"], **stream})
    if not _emit(args, {"streams": rows}):
        for row in rows:
            marker = " +" if row["continues"] else ""
            print(
                f"{row['offset']:>12}  {row['id']:<4}  {row['length']:>12}  "
                f"{row['integrity']:<9}  in {row['block_type']}@{row['block_offset']}{marker}"
            )
    _report_reader_issues(reader)


def info_command(args: argparse.Namespace) -> None:
    counts: Counter = Counter()
    described: Dict[str, Any] = {}
    with _open_image(args) as image:
        reader = image.reader()
        try:
            for block in reader:
                counts[block.tag] += 1
                if block.block_type in (BlockType.TAPE, BlockType.SSET, BlockType.VOLB):
                    described.setdefault(block.tag, block.descriptor.to_dict())
        except (MTFError, ResourceBudgetExceeded) as exc:
            raise CommandError(f"Decoding stopped at offset {reader.position}: {exc}") from exc
        byte_order = reader.context.byte_order
    payload = {
        "byte_order": byte_order.name.lower() if byte_order is not None else None,
        "blocks": dict(sorted(counts.items())),
        **{tag.lower(): fields for tag, fields in described.items()},
    }
    if not _emit(args, payload):
        print(f"Image: {args.image}")
        if payload["byte_order"]:
            print(f"Byte order: {payload['byte_order']}")
        print("Blocks:")
        for tag, count in payload["blocks"].items():
            print(f"  {tag}: {count}")
        for tag, fields in described.items():
            print(f"{tag}:")
            for key, value in fields.items():
                if key != "type" and value not in (None, "", []):
                    print(f"  {key}: {value}")
    _report_reader_issues(reader)


def _hexdump(data: bytes, base: int) -> Iterator[str]:
    for start in range(0, len(data), 16):
        row = data[start : start + 16]
        text = "".join(chr(byte) if 32 <= byte < 127 else "." for byte in row)
        yield f"{base + start:08x}  {row.hex(' '):<47}  {text}"


def read_command(args: argparse.Namespace) -> None:
    if args.offset < 0 or args.length < 0:
        raise CommandError("--offset and --length must be non-negative")
    with _open_image(args) as image:
        try:
            with image.provider(args.stream) as provider:
                result = provider.read(args.offset, args.length)
        except (MTFError, ResourceBudgetExceeded) as exc:
            raise CommandError(str(exc)) from exc
    if args.output:
        try:
            Path(args.output).write_bytes(result.data)
        except OSError as exc:
            raise CommandError(f"Failed to write to '{args.output}': {exc}") from exc
    else:
        for line in _hexdump(result.data, args.offset):
            print(line)
    print(f"{result.status.value}: {result.available} of {result.requested} bytes", file=sys.stderr)
    for issue in result.issues:
        print(f"warning: {issue.message}", file=sys.stderr)
    if result.status is ReadStatus.NEEDS_NEXT_VOLUME and result.volume_request is not None:
        request = result.volume_request
        raise CommandError(
            f"{args.stream} continues on volume {request.volume} at logical offset {request.logical_offset}"
        )


def modes_command(args: argparse.Namespace) -> None:
    modes = available_modes()
    if not _emit(args, modes):
        for name, description in modes.items():
            print(f"{name}: {description}")


def _add_output_flags(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--json", action="store_true", help="Emit JSON")
    group.add_argument("--yaml", action="store_true", help="Emit YAML")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--mode",
        choices=sorted(available_modes().keys()),
        help="Decoder preset (default: $MTF_DECODER_MODE or lenient)",
    )
    parser.add_argument("--config", help="YAML file with decoder options")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase log verbosity")
    subparsers = parser.add_subparsers(dest="command", required=True)

    blocks_parser = subparsers.add_parser("blocks", help="List the blocks of an image")
    blocks_parser.add_argument("image", help="Tape image file")
    blocks_parser.add_argument("--start", type=int, default=0, help="Physical offset of the first block")
    _add_output_flags(blocks_parser)
    blocks_parser.set_defaults(func=blocks_command)

    streams_parser = subparsers.add_parser("streams", help="List the streams of an image")
    streams_parser.add_argument("image", help="Tape image file")
    streams_parser.add_argument("--id", help="Only show streams with this 4-character id")
    _add_output_flags(streams_parser)
    streams_parser.set_defaults(func=streams_command)

    info_parser = subparsers.add_parser("info", help="Summarise tape, set and volume headers")
    info_parser.add_argument("image", help="Tape image file")
    _add_output_flags(info_parser)
    info_parser.set_defaults(func=info_command)

    read_parser = subparsers.add_parser("read", help="Read bytes of a logical stream")
    read_parser.add_argument("image", help="Tape image file")
    read_parser.add_argument("--stream", default="STAN", help="Stream id to follow (default: STAN)")
    read_parser.add_argument("--offset", type=int, default=0, help="Logical offset to read from")
    read_parser.add_argument("--length", type=int, default=256, help="Number of bytes to read")
    read_parser.add_argument("-o", "--output", help="Write the bytes to this file instead of a hex dump")
    read_parser.set_defaults(func=read_command)

    modes_parser = subparsers.add_parser("modes", help="List decoder presets")
    _add_output_flags(modes_parser)
    modes_parser.set_defaults(func=modes_command)

    return parser


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    try:
        args.func(args)
    except CommandError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":  # pragma: no cover
    main()
