"""
accsim — Single-Accumulator Computer Simulator
==============================================
A teaching model of a minimal computer: one processing unit with an
accumulator, a small byte memory, and a shared channel (bus) that carries
every fetch, read and write between them.

Architecture:
    ┌──────────┐    ┌───────────┐    ┌────────────────────────────────┐
    │ Source   │───>│ Assembler │───>│ Machine                        │
    │ (lines)  │    │ (program, │    │  ProcessingUnit ── Channel ──┐ │
    └──────────┘    │  data)    │    │        │                     │ │
                    └───────────┘    │        └────── Memory <──────┘ │
                                     └────────────────────────────────┘
                                           │ step snapshots, bus events
                                           v
                                     external observers (UI, logs, CLI)

    - isa.py:       opcode table, decoder, disassembler
    - memory.py:    wraparound byte memory
    - channel.py:   last-transaction bus with subscribe/cancel tokens
    - regs.py:      PC / ACC / IR / Z / halted
    - cpu.py:       fetch-decode-execute state machine
    - assembler.py: two-pass text -> (program, data) assembler
    - machine.py:   composition, run loop, deferred bus clear
    - config.py:    machine profiles and JSON configuration
"""

__version__ = "0.3.0"

from .isa import OPCODES, OPCODE_NAMES, decode_opcode, disassemble, format_disassembly
from .memory import Memory
from .channel import BusState, Channel, Control, Subscription
from .regs import Registers
from .cpu import ProcessingUnit, StepResult, StopReason
from .assembler import Assembler, AssemblerError, AssemblyResult, Diagnostic, assemble
from .config import ConfigError, MachineConfig, PROFILES, load_config
from .machine import DeferredClear, Machine


def run_source(source, *, config: MachineConfig = None, max_steps: int = None):
    """Assemble source, run it to completion and return the Machine.

    Convenience pipeline: Assembler -> Machine.load -> ProcessingUnit.run.
    Raises AssemblerError if the source has errors.
    """
    machine = Machine(config or PROFILES["headless"])
    result = machine.assemble_and_load(source)
    result.raise_for_errors()
    machine.run(max_steps)
    return machine
