#!/usr/bin/env python3
"""
acckit — accsim command-line toolkit
====================================

One CLI for the single-accumulator simulator:
    acckit asm     — Assemble source to a listing, JSON image or raw binary
    acckit run     — Assemble, load and execute a program
    acckit disasm  — Disassemble a binary or JSON program image

Usage:
    python acckit.py <command> [options]
    python acckit.py <command> --help

Examples:
    python acckit.py asm programs/sum.asm --listing
    python acckit.py asm programs/sum.asm -o sum.json
    python acckit.py run programs/sum.asm --trace --dump
    python acckit.py run programs/countdown.asm --profile full --max-steps 500
    python acckit.py run programs/sum.asm --realtime --interval 200
    python acckit.py disasm sum.bin
"""

import argparse
import json
import logging
import os
import sys

# Allow running from project root without installing
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from accsim import __version__
from accsim.assembler import Assembler, AssemblerError
from accsim.config import ConfigError, PROFILES, load_config
from accsim.cpu import StopReason
from accsim.isa import format_disassembly
from accsim.log_setup import setup_logging
from accsim.machine import Machine


def parse_int_arg(value: str) -> int:
    """Parse an integer argument that may be hex (0x...), $ prefix, or decimal."""
    value = value.strip()
    if value.startswith("0x") or value.startswith("0X"):
        return int(value, 16)
    if value.startswith("$"):
        return int(value[1:], 16)
    return int(value)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="acckit",
        description="Single-accumulator computer toolkit: assemble, run, disassemble",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Profiles: " + ", ".join(PROFILES.keys()),
    )
    parser.add_argument("--version", action="version", version=f"acckit {__version__}")
    parser.add_argument("--verbose", "-v", action="count", default=0,
                        help="Log more (-v info, -vv debug)")
    parser.add_argument("--log-dir", default=None,
                        help="Also write a debug log file into this directory")
    sub = parser.add_subparsers(dest="command", metavar="command")

    # ── asm ──────────────────────────────────────────────────────────────
    p_asm = sub.add_parser("asm", help="Assemble source to listing, JSON or binary")
    p_asm.add_argument("input", help="Input assembly file")
    p_asm.add_argument("-o", "--output", help="Output file (.json, .bin or .lst)")
    p_asm.add_argument("--listing", action="store_true", help="Print listing to stdout")
    p_asm.add_argument("--strict", action="store_true",
                       help="Treat warnings (unknown mnemonics, stray operands) as errors")
    p_asm.add_argument("--org", default=None, help="Origin address for labels")

    # ── run ──────────────────────────────────────────────────────────────
    p_run = sub.add_parser("run", help="Assemble, load and execute a program")
    p_run.add_argument("input", help="Input assembly file")
    p_run.add_argument("--profile", default="headless", choices=list(PROFILES.keys()),
                       help="Machine profile (default: headless)")
    p_run.add_argument("--config", default=None, help="JSON configuration file")
    p_run.add_argument("--size", default=None, help="Memory size in cells")
    p_run.add_argument("--start", default=None, help="Load address")
    p_run.add_argument("--max-steps", type=int, default=None,
                       help="Stop after this many instructions")
    p_run.add_argument("--strict", action="store_true", help="Strict assembly")
    p_run.add_argument("--trace", action="store_true", help="Print instruction trace")
    p_run.add_argument("--dump", action="store_true", help="Print memory after the run")
    p_run.add_argument("--realtime", action="store_true",
                       help="Use the periodic run loop instead of running flat out")
    p_run.add_argument("--interval", type=int, default=None,
                       help="Milliseconds per step in --realtime mode")

    # ── disasm ───────────────────────────────────────────────────────────
    p_dis = sub.add_parser("disasm", help="Disassemble a .bin or .json program image")
    p_dis.add_argument("input", help="Input .bin or .json file")
    p_dis.add_argument("--start", default="0", help="Address of the first byte")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    level = {0: logging.WARNING, 1: logging.INFO}.get(args.verbose, logging.DEBUG)
    setup_logging(console_level=level, log_dir=args.log_dir)

    try:
        return COMMANDS[args.command](args)
    except AssemblerError as e:
        print(f"Assembly error: {e}", file=sys.stderr)
        return 1
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Internal error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 2


# ═════════════════════════════════════════════════════════════════════════════
# COMMAND IMPLEMENTATIONS
# ═════════════════════════════════════════════════════════════════════════════

def _read_source(path):
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


# ── asm ──────────────────────────────────────────────────────────────────
def cmd_asm(args):
    source = _read_source(args.input)
    org = parse_int_arg(args.org) if args.org else 0

    asm = Assembler(origin=org, strict=args.strict)
    result = asm.assemble(source)
    result.raise_for_errors()

    if args.listing:
        print(asm.get_listing())
        return 0

    if not args.output:
        print("program:", " ".join(str(b) for b in result.program))
        print("data:   ", " ".join(f"{a}={v}" for a, v in sorted(result.data.items())))
        return 0

    out = args.output
    ext = os.path.splitext(out)[1].lower()
    if ext == ".json":
        image = {"origin": org, "program": result.program,
                 "data": {str(a): v for a, v in result.data.items()}}
        with open(out, "w", encoding="utf-8") as f:
            json.dump(image, f, indent=2)
            f.write("\n")
    elif ext == ".lst":
        with open(out, "w", encoding="utf-8") as f:
            f.write(asm.get_listing() + "\n")
    else:  # .bin or anything else
        if result.data:
            print("Warning: raw binary holds the program only; use .json to keep DATA",
                  file=sys.stderr)
        with open(out, "wb") as f:
            f.write(bytes(b & 0xFF for b in result.program))
    print(f"Assembled {len(result.program)} bytes -> {out}")
    return 0


# ── run ──────────────────────────────────────────────────────────────────
def cmd_run(args):
    source = _read_source(args.input)
    overrides = {
        "memory_size": parse_int_arg(args.size) if args.size else None,
        "load_address": parse_int_arg(args.start) if args.start else None,
        "step_interval_ms": args.interval,
        "max_steps": args.max_steps,
        "trace": True if args.trace else None,
    }
    if not args.realtime:
        overrides["bus_clear_delay_ms"] = 0
    config = load_config(args.config, profile=args.profile, **overrides)

    with Machine(config) as machine:
        result = machine.assemble_and_load(source, strict=args.strict)
        result.raise_for_errors()

        if args.realtime:
            def on_step(s):
                print(f"[{s.pc:3d}] {s.action}")
                if machine.cpu.steps >= config.max_steps:
                    machine.stop()

            machine.subscribe_steps(on_step)
            machine.start()
            machine.wait()
            reason = StopReason.HALT if machine.cpu.halted else StopReason.TIMEOUT
        else:
            reason = machine.run()

        if args.trace and not args.realtime:
            print(machine.cpu.get_trace())
        for value in machine.cpu.output:
            print(f"OUT: {value}")
        print(f"{reason.value} after {machine.cpu.steps} steps")
        print(machine.cpu.regs.display())
        if args.dump:
            print(machine.memory.hexdump())

    return 0 if reason is StopReason.HALT else 3


# ── disasm ───────────────────────────────────────────────────────────────
def cmd_disasm(args):
    start = parse_int_arg(args.start)
    if args.input.lower().endswith(".json"):
        with open(args.input, "r", encoding="utf-8") as f:
            image = json.load(f)
        if not isinstance(image, dict) or not isinstance(image.get("program"), list):
            raise ValueError(f"{args.input}: JSON image needs a \"program\" byte list")
        program = image["program"]
        start = image.get("origin", start)
    else:
        with open(args.input, "rb") as f:
            program = list(f.read())
    print(format_disassembly(program, start))
    return 0


COMMANDS = {
    "asm": cmd_asm,
    "run": cmd_run,
    "disasm": cmd_disasm,
}


if __name__ == "__main__":
    sys.exit(main())
