#!/usr/bin/env python3
"""cfr_interpreter.py

A tokenizer, parser and turtle interpreter for the CFR[] drawing language,
rendering to SVG.

The language has five symbols (case-insensitive, everything else ignored):
- C: advance to the next palette color.
- F: step one cell forward and paint it.
- R: rotate 45 degrees clockwise.
- [ ... ]: run the enclosed block twice.

Run:
  python cfr_interpreter.py render program.cfr output.svg
  python cfr_interpreter.py render -e "[[[[FR]]]]" output.svg
  python cfr_interpreter.py check program.cfr
  python cfr_interpreter.py random out.cfr --seed 123
  python cfr_interpreter.py --help
"""

from __future__ import annotations

import argparse
import enum
import json
import logging
import os
import random
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Union, cast

logger = logging.getLogger(__name__)

MAX_SOURCE_BYTES = 256
GRID_SIZE = 256
START_POSITION = (126, 126)
LOOP_REPEAT = 2

PALETTE: tuple[str, ...] = (
    "#000000",
    "#3366ff",
    "#00cc00",
    "#00cccc",
    "#cc0000",
    "#cc00cc",
    "#cccc00",
    "#cccccc",
)


# -------------------------
# Errors / Validation
# -------------------------


class CfrError(Exception):
    """Base class for errors raised while running a program."""


class LengthExceeded(CfrError):
    def __init__(self, length: int, limit: int = MAX_SOURCE_BYTES) -> None:
        super().__init__(f"source is {length} bytes, limit is {limit}")
        self.length = length
        self.limit = limit


class MalformedProgram(CfrError):
    """Loop delimiters do not pair up."""

    def __init__(self, message: str, index: int) -> None:
        super().__init__(message)
        self.index = index


class UnmatchedLoopEnd(MalformedProgram):
    def __init__(self, index: int) -> None:
        super().__init__(f"unmatched ']' at token {index}", index)


class UnclosedLoop(MalformedProgram):
    def __init__(self, index: int) -> None:
        super().__init__(f"unclosed '[' at token {index}", index)


class StepLimitExceeded(CfrError):
    def __init__(self, limit: int) -> None:
        super().__init__(f"execution exceeded {limit} steps")
        self.limit = limit


class ConfigError(ValueError):
    pass


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigError(msg)


def _as_int(x: Any, path: str) -> int:
    _require(
        isinstance(x, int) and not isinstance(x, bool), f"{path} must be an integer"
    )
    return int(x)


def _as_str(x: Any, path: str) -> str:
    _require(isinstance(x, str), f"{path} must be a string")
    return cast(str, x)


def _as_dict(x: Any, path: str) -> dict[str, Any]:
    _require(isinstance(x, dict), f"{path} must be an object")
    return cast(dict[str, Any], x)


# -------------------------
# Tokenizer
# -------------------------


class Token(enum.Enum):
    CHANGE_COLOR = "C"
    MOVE_FORWARD = "F"
    ROTATE_RIGHT = "R"
    LOOP_BEGIN = "["
    LOOP_END = "]"


_TOKEN_BY_CHAR: dict[str, Token] = {t.value: t for t in Token}


def tokenize(source: str) -> list[Token]:
    """Map recognized characters to tokens, silently dropping the rest."""
    tokens = [_TOKEN_BY_CHAR[ch] for ch in source.upper() if ch in _TOKEN_BY_CHAR]
    logger.debug("tokenized %d characters into %d tokens", len(source), len(tokens))
    return tokens


# -------------------------
# Command model / Parser
# -------------------------


@dataclass(frozen=True)
class ChangeColor:
    pass


@dataclass(frozen=True)
class MoveForward:
    pass


@dataclass(frozen=True)
class RotateRight:
    pass


@dataclass(frozen=True)
class Loop:
    body: tuple[Command, ...] = ()


Command = Union[ChangeColor, MoveForward, RotateRight, Loop]

_LEAF_COMMANDS: dict[Token, Command] = {
    Token.CHANGE_COLOR: ChangeColor(),
    Token.MOVE_FORWARD: MoveForward(),
    Token.ROTATE_RIGHT: RotateRight(),
}


def _parse_span(tokens: Sequence[Token], begin: int, end: int) -> list[Command]:
    commands: list[Command] = []
    depth = 0
    loop_start = begin

    for index in range(begin, end):
        token = tokens[index]
        if depth == 0:
            if token is Token.LOOP_BEGIN:
                depth = 1
                loop_start = index
            elif token is Token.LOOP_END:
                raise UnmatchedLoopEnd(index)
            else:
                commands.append(_LEAF_COMMANDS[token])
        elif token is Token.LOOP_BEGIN:
            depth += 1
        elif token is Token.LOOP_END:
            depth -= 1
            if depth == 0:
                body = _parse_span(tokens, loop_start + 1, index)
                commands.append(Loop(tuple(body)))

    if depth != 0:
        raise UnclosedLoop(loop_start)
    return commands


def parse(tokens: Sequence[Token]) -> list[Command]:
    """Build the command tree, matching each '[' with its ']'.

    Raises UnmatchedLoopEnd or UnclosedLoop (both MalformedProgram). Token
    indices in the errors are positions in ``tokens``, not in the source.
    """
    commands = _parse_span(tokens, 0, len(tokens))
    logger.debug("parsed %d tokens into %d top-level commands", len(tokens), len(commands))
    return commands


@dataclass(frozen=True)
class ProgramStats:
    leaves: int
    loops: int
    max_depth: int

    @property
    def nodes(self) -> int:
        return self.leaves + self.loops


def summarize(commands: Sequence[Command]) -> ProgramStats:
    leaves = loops = max_depth = 0
    # Frames: (commands, depth)
    stack: list[tuple[Sequence[Command], int]] = [(commands, 0)]
    while stack:
        seq, depth = stack.pop()
        max_depth = max(max_depth, depth)
        for cmd in seq:
            if isinstance(cmd, Loop):
                loops += 1
                stack.append((cmd.body, depth + 1))
            else:
                leaves += 1
    return ProgramStats(leaves=leaves, loops=loops, max_depth=max_depth)


# -------------------------
# Direction / Machine
# -------------------------


class Direction(enum.IntEnum):
    NORTH = 0
    NORTHEAST = 1
    EAST = 2
    SOUTHEAST = 3
    SOUTH = 4
    SOUTHWEST = 5
    WEST = 6
    NORTHWEST = 7

    def rotated(self) -> Direction:
        return Direction((self + 1) % len(Direction))

    @property
    def offset(self) -> tuple[int, int]:
        return _OFFSETS[self]


# y grows downwards, so North is -1.
_OFFSETS: dict[Direction, tuple[int, int]] = {
    Direction.NORTH: (0, -1),
    Direction.NORTHEAST: (1, -1),
    Direction.EAST: (1, 0),
    Direction.SOUTHEAST: (1, 1),
    Direction.SOUTH: (0, 1),
    Direction.SOUTHWEST: (-1, 1),
    Direction.WEST: (-1, 0),
    Direction.NORTHWEST: (-1, -1),
}


@dataclass(frozen=True)
class DrawEvent:
    x: int
    y: int
    color: str


DrawSink = Callable[[DrawEvent], None]


def _discard(event: DrawEvent) -> None:
    pass


@dataclass
class Machine:
    """Turtle state for a single execution pass."""

    x: int = START_POSITION[0]
    y: int = START_POSITION[1]
    heading: Direction = Direction.NORTH
    color_index: int = len(PALETTE) - 1
    max_steps: int | None = None
    steps: int = 0

    @property
    def position(self) -> tuple[int, int]:
        return (self.x, self.y)

    @property
    def color(self) -> str:
        return PALETTE[self.color_index]

    def change_color(self) -> None:
        self.color_index = (self.color_index + 1) % len(PALETTE)

    def rotate_right(self) -> None:
        self.heading = self.heading.rotated()

    def move_forward(self) -> DrawEvent:
        dx, dy = self.heading.offset
        self.x = (self.x + dx) % GRID_SIZE
        self.y = (self.y + dy) % GRID_SIZE
        return DrawEvent(self.x, self.y, self.color)

    def _tick(self) -> None:
        self.steps += 1
        if self.max_steps is not None and self.steps > self.max_steps:
            raise StepLimitExceeded(self.max_steps)

    def execute(self, commands: Sequence[Command], emit: DrawSink) -> None:
        for cmd in commands:
            self._tick()
            if isinstance(cmd, ChangeColor):
                self.change_color()
            elif isinstance(cmd, RotateRight):
                self.rotate_right()
            elif isinstance(cmd, MoveForward):
                emit(self.move_forward())
            elif isinstance(cmd, Loop):
                for _ in range(LOOP_REPEAT):
                    self.execute(cmd.body, emit)
            else:
                raise TypeError(f"Unknown command {cmd!r}")


def execute(
    commands: Sequence[Command],
    emit: DrawSink | None = None,
    *,
    max_steps: int | None = None,
) -> Machine:
    """Run ``commands`` on a fresh machine and return the final machine."""
    machine = Machine(max_steps=max_steps)
    machine.execute(commands, emit or _discard)
    return machine


def run(
    source: str,
    emit: DrawSink | None = None,
    *,
    max_steps: int | None = None,
) -> list[DrawEvent]:
    """Length-check, tokenize, parse and execute ``source``.

    Returns every draw event in order. ``emit`` receives the same events
    once execution has finished, so it sees nothing when the run fails.
    Raises LengthExceeded, MalformedProgram or StepLimitExceeded.
    """
    length = source_length(source)
    if length > MAX_SOURCE_BYTES:
        raise LengthExceeded(length)

    commands = parse(tokenize(source))
    events: list[DrawEvent] = []
    execute(commands, events.append, max_steps=max_steps)
    logger.debug("emitted %d draw events", len(events))

    if emit is not None:
        for event in events:
            emit(event)
    return events


def source_length(source: str) -> int:
    """UTF-8 byte length of ``source``; lone surrogates count as 3 bytes."""
    return len(source.encode("utf-8", errors="surrogatepass"))


def error_message(exc: CfrError) -> str:
    """Canvas message for a failed run."""
    if isinstance(exc, LengthExceeded):
        return f"Command max length exceeded ({exc.limit} bytes)"
    if isinstance(exc, MalformedProgram):
        return "Unclosed delimiter"
    return str(exc).capitalize()


# -------------------------
# SVG writing
# -------------------------


@dataclass(frozen=True)
class RenderConfig:
    cell_size: int = 4
    background: str | None = "#000000"
    error_fill: str = "#e62937"
    error_text: str = "#000000"
    title: str | None = None


def _ensure_parent_dir(path: str) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)) or ".", exist_ok=True)


def _escape(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _svg_header(config: RenderConfig) -> list[str]:
    size = GRID_SIZE * config.cell_size
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<svg xmlns="http://www.w3.org/2000/svg" version="1.1" '
        f'viewBox="0 0 {size} {size}" width="{size}" height="{size}">',
    ]
    if config.title:
        lines.append(f"  <title>{_escape(config.title)}</title>")
    return lines


def _write_lines(lines: list[str], out_path: str) -> None:
    _ensure_parent_dir(out_path)
    with open(out_path, "w", encoding="utf-8") as f:
        f.write("\n".join(lines))
        f.write("\n")


def write_svg(
    events: Sequence[DrawEvent], *, out_path: str, config: RenderConfig
) -> None:
    size = GRID_SIZE * config.cell_size
    lines = _svg_header(config)

    if config.background and config.background.lower() != "none":
        lines.append(
            f'  <rect x="0" y="0" width="{size}" height="{size}" '
            f'fill="{config.background}" />'
        )

    # Last paint wins; cells never overlap, so dict order is irrelevant.
    cells: dict[tuple[int, int], str] = {}
    for ev in events:
        cells[(ev.x, ev.y)] = ev.color

    c = config.cell_size
    for (x, y), color in cells.items():
        lines.append(
            f'  <rect x="{x * c}" y="{y * c}" width="{c}" height="{c}" fill="{color}" />'
        )

    lines.append("</svg>")
    _write_lines(lines, out_path)


def write_error_svg(message: str, *, out_path: str, config: RenderConfig) -> None:
    size = GRID_SIZE * config.cell_size
    font_size = max(1, size * 44 // 1024)
    lines = _svg_header(config)
    lines.append(
        f'  <rect x="0" y="0" width="{size}" height="{size}" fill="{config.error_fill}" />'
    )
    lines.append(
        f'  <text x="{size // 2}" y="{size // 2}" text-anchor="middle" '
        f'dominant-baseline="middle" font-family="monospace" '
        f'font-size="{font_size}" fill="{config.error_text}">{_escape(message)}</text>'
    )
    lines.append("</svg>")
    _write_lines(lines, out_path)


# -------------------------
# Config parsing
# -------------------------


def parse_render_config(obj: dict[str, Any]) -> RenderConfig:
    obj = _as_dict(obj, "root")
    defaults = RenderConfig()

    cell_size = _as_int(obj.get("cell_size", defaults.cell_size), "cell_size")
    _require(cell_size > 0, "cell_size must be > 0")

    background = obj.get("background", defaults.background)
    if background is not None:
        background = _as_str(background, "background")

    error_fill = _as_str(obj.get("error_fill", defaults.error_fill), "error_fill")
    error_text = _as_str(obj.get("error_text", defaults.error_text), "error_text")

    title = obj.get("title")
    if title is not None:
        title = _as_str(title, "title")

    return RenderConfig(
        cell_size=cell_size,
        background=background,
        error_fill=error_fill,
        error_text=error_text,
        title=title,
    )


def load_json(path: str) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        try:
            return cast(dict[str, Any], json.load(f))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e


# -------------------------
# Random program generator
# -------------------------

_RANDOM_MAX_DEPTH = 3
# Room for the closing brackets and the guaranteed F.
_RANDOM_MAX_LENGTH = MAX_SOURCE_BYTES - _RANDOM_MAX_DEPTH - 1


def generate_random_program(
    seed: int | None = None, length: int | None = None, *, p_loop: float = 0.15
) -> str:
    """Generate a random program with balanced brackets.

    Produces symbols from: C, F, R, [, ]
    Nesting never exceeds three loops, no loop is empty, and the result
    always contains an F. Each turtle command is drawn with weights that
    favour F, so most loops paint something.
    """
    rng = random.Random(seed)
    if length is None:
        length = rng.randint(8, 48)
    _require(
        0 < length <= _RANDOM_MAX_LENGTH,
        f"length must be between 1 and {_RANDOM_MAX_LENGTH}",
    )

    word: list[str] = []
    # One flag per open loop: has its body received anything yet?
    filled: list[bool] = []

    def close_loop() -> None:
        if not filled.pop():
            word.append("F")
        word.append("]")
        if filled:
            filled[-1] = True

    for _ in range(length):
        r = rng.random()
        if r < p_loop and len(filled) < _RANDOM_MAX_DEPTH:
            word.append("[")
            filled.append(False)
        elif r < p_loop * 2 and filled and filled[-1]:
            close_loop()
        else:
            word.append(rng.choices("FRC", weights=(6, 3, 1))[0])
            if filled:
                filled[-1] = True

    while filled:
        close_loop()

    if "F" not in word:
        word.append("F")

    return "".join(word)


# -------------------------
# CLI / Help
# -------------------------

HELP_EPILOG = r"""
LANGUAGE

  C   advance to the next palette color
  F   move one cell forward and paint it
  R   rotate 45 degrees clockwise
  [ ] run the enclosed commands twice

  Letters are case-insensitive and every other character is ignored, so
  "c f" and "CF" are the same program. Loops nest: [[F]] paints 4 cells.

  The turtle starts at (126,126) on a 256x256 grid, heading north, using the
  last palette color. Stepping off one edge re-enters from the opposite edge.
  Programs longer than 256 bytes are rejected.

PALETTE

  #000000 #3366ff #00cc00 #00cccc #cc0000 #cc00cc #cccc00 #cccccc

RENDER CONFIG (render --config)

  {
    "cell_size": 4,            pixels per grid cell (default 4)
    "background": "#000000",   canvas color, or "none" (default "#000000")
    "error_fill": "#e62937",   canvas color for failed programs
    "error_text": "#000000",   message color for failed programs
    "title": "spiral"          optional SVG <title>
  }

EXIT STATUS

  0 success, 1 program error (too long, unbalanced brackets, step limit),
  2 config or file error.
"""


def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="cfr",
        description="Interpreter for the CFR[] turtle language that outputs SVG.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=HELP_EPILOG,
    )
    p.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging."
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    def add_program_args(sp: argparse.ArgumentParser) -> None:
        sp.add_argument(
            "program", help="Path to the program file, or '-' to read stdin."
        )
        sp.add_argument(
            "-e",
            "--expr",
            action="store_true",
            help="Treat PROGRAM as the program text itself.",
        )
        sp.add_argument(
            "--max-steps",
            type=int,
            default=1_000_000,
            help="Abort after this many executed commands. Default: 1000000.",
        )

    pr = sub.add_parser(
        "render",
        help="Run a program and write the canvas to an SVG file.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    add_program_args(pr)
    pr.add_argument("output", help="Path to write the SVG output.")
    pr.add_argument("--config", help="Path to a JSON render config.")
    pr.add_argument("--cell-size", type=int, help="Override config cell_size.")
    pr.add_argument("--background", help="Override config background.")

    pc = sub.add_parser(
        "check",
        help="Run a program and print a brief summary.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    add_program_args(pc)

    pt = sub.add_parser(
        "trace",
        help="Run a program and print every draw event.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    add_program_args(pt)

    pg = sub.add_parser(
        "random",
        help="Generate a random valid program for experimentation.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    pg.add_argument("output", help="Where to write the generated program.")
    pg.add_argument(
        "--seed", type=int, default=None, help="Seed for repeatable randomness."
    )
    pg.add_argument("--length", type=int, default=None, help="Number of symbols.")

    return p


# -------------------------
# Commands
# -------------------------


def read_program(program: str, *, expr: bool = False) -> str:
    if expr:
        return program
    if program == "-":
        text = sys.stdin.read()
    else:
        with open(program, encoding="utf-8") as f:
            text = f.read()
    return text.rstrip("\r\n")


def cmd_render(
    source: str,
    output_path: str,
    config: RenderConfig,
    max_steps: int | None,
) -> int:
    try:
        events = run(source, max_steps=max_steps)
    except CfrError as e:
        write_error_svg(error_message(e), out_path=output_path, config=config)
        logger.info("Wrote error canvas to %s", output_path)
        print(f"Program error: {e}", file=sys.stderr)
        return 1
    write_svg(events, out_path=output_path, config=config)
    logger.info("Wrote %d draw events to %s", len(events), output_path)
    return 0


def cmd_check(source: str, max_steps: int | None) -> None:
    length = source_length(source)
    print(f"bytes: {length}/{MAX_SOURCE_BYTES}")
    if length > MAX_SOURCE_BYTES:
        raise LengthExceeded(length)

    tokens = tokenize(source)
    commands = parse(tokens)
    stats = summarize(commands)
    print(f"tokens: {len(tokens)}")
    print(f"commands: {stats.nodes} (loops: {stats.loops}, depth: {stats.max_depth})")

    count = 0

    def tally(event: DrawEvent) -> None:
        nonlocal count
        count += 1

    machine = execute(commands, tally, max_steps=max_steps)
    print(f"draw events: {count}")
    print(
        "final: "
        f"position=({machine.x},{machine.y}) heading={machine.heading.name.lower()} "
        f"color={machine.color}"
    )


def cmd_trace(source: str, max_steps: int | None) -> None:
    events = run(source, max_steps=max_steps)
    for ev in events:
        print(f"{ev.x} {ev.y} {ev.color}")


def cmd_random(output_path: str, seed: int | None, length: int | None) -> None:
    program = generate_random_program(seed, length)
    _ensure_parent_dir(output_path)
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(program)
        f.write("\n")


def _render_config_from_args(args: argparse.Namespace) -> RenderConfig:
    cfg_obj = load_json(args.config) if args.config else {}
    if args.cell_size is not None:
        cfg_obj["cell_size"] = args.cell_size
    if args.background is not None:
        cfg_obj["background"] = args.background
    return parse_render_config(cfg_obj)


def main(argv: list[str] | None = None) -> int:
    ap = build_argparser()
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    try:
        if args.cmd == "render":
            config = _render_config_from_args(args)
            source = read_program(args.program, expr=args.expr)
            return cmd_render(source, args.output, config, args.max_steps)
        elif args.cmd == "check":
            cmd_check(read_program(args.program, expr=args.expr), args.max_steps)
        elif args.cmd == "trace":
            cmd_trace(read_program(args.program, expr=args.expr), args.max_steps)
        elif args.cmd == "random":
            cmd_random(args.output, args.seed, args.length)
        else:
            raise AssertionError("unreachable")
    except CfrError as e:
        print(f"Program error: {e}", file=sys.stderr)
        return 1
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2
    except (OSError, UnicodeDecodeError) as e:
        print(f"File error: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
