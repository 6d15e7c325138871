"""CLI for LaaD: compile, check and inspect .laad files, convert and dump LNJ files."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

from .compiler import Compiler
from .config import CompilerOptions
from .container import decode_container, encode_container
from .emitter import to_json
from .errors import LaadError
from .graph import generate_mermaid
from .parser import parse

LOG_LEVELS = {
    "off": logging.CRITICAL + 10,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

LOG_FORMAT = "[%(asctime)s][%(name)s][%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d][%H:%M:%S"


def main(argv: list[str] | None = None) -> int:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="YAML file with compiler options")
    common.add_argument(
        "--templates", action="append", default=[], metavar="FILE",
        help="Extra node template YAML file (repeatable)",
    )
    common.add_argument(
        "--log-level", choices=sorted(LOG_LEVELS), default="warning", help="Logging verbosity",
    )
    common.add_argument("--log-file", metavar="FILE", help="Also write log records to this file")

    parser = argparse.ArgumentParser(
        prog="laad",
        description="Compiler from LaaD source to LogiX node graphs (LNJ)",
    )
    sub = parser.add_subparsers(dest="command")

    # compile
    compile_p = sub.add_parser("compile", parents=[common], help="Compile .laad to LNJ")
    compile_p.add_argument("file", help="Input .laad file")
    compile_p.add_argument("--pretty", action="store_true", help="Pretty-print output")
    compile_p.add_argument("-o", "--output", help="Write to this file instead of stdout")
    compile_p.add_argument("--lzbs", action="store_true", help="Write an LZBS container instead of JSON")

    # check
    check_p = sub.add_parser("check", parents=[common], help="Run every pass without emitting")
    check_p.add_argument("file", help="Input .laad file")

    # ast
    ast_p = sub.add_parser("ast", parents=[common], help="Show parsed AST (debug)")
    ast_p.add_argument("file", help="Input .laad file")

    # graph
    graph_p = sub.add_parser("graph", parents=[common], help="Generate Mermaid flowchart")
    graph_p.add_argument("file", help="Input .laad file")

    # compress / decompress
    compress_p = sub.add_parser("compress", parents=[common], help="Convert LNJ JSON to LZBS")
    compress_p.add_argument("file", help="Input .lnj file")
    compress_p.add_argument("-o", "--output", help="Output file (default: input with .lzbs suffix)")

    decompress_p = sub.add_parser("decompress", parents=[common], help="Convert LZBS to LNJ JSON")
    decompress_p.add_argument("file", help="Input .lzbs file")
    decompress_p.add_argument("-o", "--output", help="Write to this file instead of stdout")
    decompress_p.add_argument("--pretty", action="store_true", help="Pretty-print output")

    # dump-json
    dump_p = sub.add_parser("dump-json", parents=[common], help="Pretty-print an LNJ file")
    dump_p.add_argument("file", help="Input .lnj file")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    _configure_logging(args.log_level, args.log_file)

    try:
        if args.command == "compress":
            return _cmd_compress(args.file, args.output)
        if args.command == "decompress":
            return _cmd_decompress(args.file, args.output, args.pretty)
        if args.command == "dump-json":
            return _cmd_dump_json(args.file)

        source = _read_file(args.file)
        if args.command == "ast":
            return _cmd_ast(source)

        compiler = Compiler(_options(args, Path(args.file).stem))
        if args.command == "compile":
            return _cmd_compile(compiler, source, args.pretty, args.output, args.lzbs)
        elif args.command == "check":
            return _cmd_check(compiler, source)
        elif args.command == "graph":
            return _cmd_graph(compiler, source)
    except FileNotFoundError as e:
        print(f"Error: file not found: {e.filename or args.file}", file=sys.stderr)
        return 1
    except LaadError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def _configure_logging(level: str, log_file: str | None = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=LOG_LEVELS[level],
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )


def _options(args, unit: str) -> CompilerOptions:
    options = CompilerOptions.from_file(args.config) if args.config else CompilerOptions()
    options = options.with_templates(*args.templates)
    if options.unit_name == "main":
        options = replace(options, unit_name=unit)
    return options


def _read_file(path: str) -> bytes:
    # Bytes go to the parser so it can reject invalid UTF-8 and a BOM itself
    with open(path, "rb") as f:
        return f.read()


def _write(output: str | None, text: str) -> None:
    if output:
        Path(output).write_text(text + "\n", encoding="utf-8")
    else:
        print(text)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _cmd_compile(compiler: Compiler, source, pretty: bool, output: str | None, lzbs: bool) -> int:
    if lzbs:
        data = encode_container(compiler.compile_document(source))
        if output:
            Path(output).write_bytes(data)
        else:
            sys.stdout.buffer.write(data)
        return 0
    text = compiler.compile_pretty(source) if pretty else compiler.compile(source)
    _write(output, text)
    return 0


def _cmd_check(compiler: Compiler, source) -> int:
    graph = compiler.compile_graph(source)
    print(f"Valid: {len(graph.vertices)} vertices, {len(graph.edges)} edges")
    logging.getLogger(__name__).info("\n%s", compiler.last_log.summary())
    return 0


def _cmd_ast(source) -> int:
    program = parse(source)
    for stmt in program.statements:
        _print_node(stmt, 0)
    return 0


def _print_node(node, depth: int) -> None:
    pad = "  " * depth
    name = type(node).__name__
    fields = getattr(node, "__dataclass_fields__", None)
    if fields is None:
        print(f"{pad}{node!r}")
        return
    scalars = []
    children = []
    for key in fields:
        value = getattr(node, key)
        if key in ("line", "column"):
            continue
        if hasattr(value, "__dataclass_fields__"):
            children.append((key, value))
        elif isinstance(value, tuple) and value and hasattr(value[0], "__dataclass_fields__"):
            children.extend((key, v) for v in value)
        else:
            scalars.append(f"{key}={value!r}" if not hasattr(value, "parts") else f"{key}={value}")
    loc = f" @{node.line}:{node.column}" if getattr(node, "line", 0) else ""
    print(f"{pad}{name}({', '.join(scalars)}){loc}")
    for key, child in children:
        print(f"{pad}  .{key}:")
        _print_node(child, depth + 2)


def _cmd_graph(compiler: Compiler, source) -> int:
    print(generate_mermaid(compiler.compile_graph(source)))
    return 0


def _cmd_compress(path: str, output: str | None) -> int:
    with open(path, encoding="utf-8") as f:
        doc = json.load(f)
    target = Path(output) if output else Path(path).with_suffix(".lzbs")
    target.write_bytes(encode_container(doc))
    print(f"Wrote {target}")
    return 0


def _cmd_decompress(path: str, output: str | None, pretty: bool) -> int:
    with open(path, "rb") as f:
        doc = decode_container(f.read())
    _write(output, to_json(doc, 2 if pretty else None))
    return 0


def _cmd_dump_json(path: str) -> int:
    with open(path, encoding="utf-8") as f:
        doc = json.load(f)
    print(to_json(doc, 2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
