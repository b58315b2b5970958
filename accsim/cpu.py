"""
accsim — Processing Unit (fetch / decode / execute)

Execution model for one step():
  1. Put a FETCH transaction for PC on the channel
  2. Read the opcode at PC into IR, advance PC (wrapping at memory size)
  3. Decode; fetch the operand byte for addressed instructions
  4. Execute: update ACC/Z/PC/memory, emitting READ or WRITE on the channel
  5. Build a StepResult snapshot and hand it to the step observer
  6. Ask the clear hook to clear the channel (immediately if no hook)

States:
  RUNNING  halted latch clear, step() executes one instruction
  HALTED   reached only by executing HALT; step() returns StopReason.HALT
           and changes nothing until reset()

There are no fault paths. Addresses wrap through Memory, arithmetic wraps
modulo 256 and unknown opcodes are reported as DATA and skipped.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

from .channel import Channel, Control
from .isa import DATA, decode_opcode
from .memory import Memory
from .regs import Registers

log = logging.getLogger(__name__)


class StopReason(Enum):
    HALT = 'HALT'
    TIMEOUT = 'TIMEOUT'


@dataclass
class StepResult:
    """Snapshot delivered after every executed instruction."""
    action: str
    pc: int
    acc: int
    ir: int
    flags: Dict[str, bool] = field(default_factory=dict)
    halted: bool = False

    def as_dict(self) -> Dict[str, object]:
        return {
            'action': self.action,
            'pc': self.pc,
            'acc': self.acc,
            'ir': self.ir,
            'flags': dict(self.flags),
        }


StepObserver = Callable[[StepResult], None]
# A clear hook receives the channel-clear callback and decides when to run it
ClearHook = Callable[[Callable[[], None]], None]


class ProcessingUnit:
    """Single-accumulator processing unit.

    Holds references to a Memory and a Channel owned by the caller.

    Usage:
        mem, bus = Memory(64), Channel()
        cpu = ProcessingUnit(mem, bus)
        cpu.load_program([1, 10, 7, 255])
        mem.write(10, 42)
        cpu.run()            # StopReason.HALT
        cpu.output           # [42]
    """

    def __init__(self, memory: Memory, channel: Channel,
                 on_step: Optional[StepObserver] = None,
                 clear_hook: Optional[ClearHook] = None):
        self.mem = memory
        self.bus = channel
        self.regs = Registers()

        # One step observer per unit, replaceable at any time
        self.on_step: Optional[StepObserver] = on_step
        self.clear_hook: Optional[ClearHook] = clear_hook

        # Values published by OUT, oldest first
        self.output: List[int] = []
        self.steps = 0

        self._trace = False
        self._trace_output: List[str] = []

        self._dispatch = self._build_dispatch()

    # ══════════════════════════════════════════════
    # Register shortcuts
    # ══════════════════════════════════════════════

    @property
    def pc(self) -> int:
        return self.regs.pc

    @property
    def acc(self) -> int:
        return self.regs.acc

    @property
    def ir(self) -> int:
        return self.regs.ir

    @property
    def halted(self) -> bool:
        return self.regs.halted

    @property
    def flags(self) -> Dict[str, bool]:
        return self.regs.flags

    # ══════════════════════════════════════════════
    # Loading
    # ══════════════════════════════════════════════

    def load_program(self, program, start: int = 0):
        """Write program bytes from start and point PC at start.

        Memory outside the written range is left as it was.
        """
        self.mem.load_bytes(program, start)
        self.regs.pc = self.mem.wrap(start)
        log.debug("Loaded %d program bytes at %d", len(program), self.regs.pc)

    # ══════════════════════════════════════════════
    # Execution
    # ══════════════════════════════════════════════

    def step(self) -> Union[StepResult, StopReason]:
        """Execute one instruction.

        Returns the StepResult snapshot, or StopReason.HALT without doing
        anything if the unit is already halted.
        """
        if self.regs.halted:
            return StopReason.HALT

        pc = self.regs.pc

        # Fetch
        self.bus.send(address=pc, data=None, control=Control.FETCH)
        opcode = self.mem.read(pc)
        self.regs.ir = opcode
        self.regs.pc = self.mem.wrap(pc + 1)

        # Decode + execute
        mnem, takes_operand = decode_opcode(opcode)
        operand = self._fetch8() if takes_operand else None
        if mnem == DATA:
            action = f"DATA {opcode}"
        else:
            action = self._dispatch[mnem](operand)

        self.steps += 1
        if self.regs.halted:
            log.info("Processing unit halted after %d steps (PC=%d)", self.steps, self.regs.pc)

        if self._trace:
            self._trace_output.append(f"${pc:02d}: {action:<22s} {self.regs.display()}")

        result = StepResult(
            action=action,
            pc=self.regs.pc,
            acc=self.regs.acc,
            ir=self.regs.ir,
            flags=self.regs.flags,
            halted=self.regs.halted,
        )
        try:
            if self.on_step is not None:
                self.on_step(result)
        finally:
            self._request_clear()
        return result

    def run(self, max_steps: Optional[int] = None) -> StopReason:
        """Step until HALT, or until max_steps instructions have run."""
        executed = 0
        while not self.regs.halted:
            if max_steps is not None and executed >= max_steps:
                return StopReason.TIMEOUT
            self.step()
            executed += 1
        return StopReason.HALT

    def _fetch8(self) -> int:
        """Fetch the byte at PC, advance PC."""
        val = self.mem.read(self.regs.pc)
        self.regs.pc = self.mem.wrap(self.regs.pc + 1)
        return val

    def _request_clear(self):
        if self.clear_hook is None:
            self.bus.clear()
        else:
            self.clear_hook(self.bus.clear)

    # ══════════════════════════════════════════════
    # Instruction handlers
    # ══════════════════════════════════════════════
    # Handler signature: handler(operand) -> action text
    # operand is the address byte, or None for inherent instructions

    def _build_dispatch(self) -> dict:
        return {
            'NOP':   self._op_nop,
            'LOAD':  self._op_load,
            'STORE': self._op_store,
            'ADD':   self._op_add,
            'SUB':   self._op_sub,
            'JMP':   self._op_jmp,
            'JZ':    self._op_jz,
            'OUT':   self._op_out,
            'HALT':  self._op_halt,
        }

    def _read_operand(self, addr: int) -> int:
        self.bus.send(address=addr, data=None, control=Control.READ)
        return self.mem.read(addr)

    def _op_nop(self, addr):
        return "NOP"

    def _op_load(self, addr):
        self.regs.set_acc(self._read_operand(addr))
        return f"LOAD {addr}"

    def _op_store(self, addr):
        self.bus.send(address=addr, data=self.regs.acc, control=Control.WRITE)
        self.mem.write(addr, self.regs.acc)
        return f"STORE {addr}"

    def _op_add(self, addr):
        self.regs.set_acc(self.regs.acc + self._read_operand(addr))
        return f"ADD {addr}"

    def _op_sub(self, addr):
        self.regs.set_acc(self.regs.acc - self._read_operand(addr))
        return f"SUB {addr}"

    def _op_jmp(self, addr):
        self.regs.pc = self.mem.wrap(addr)
        return f"JMP {addr}"

    def _op_jz(self, addr):
        if self.regs.zero:
            self.regs.pc = self.mem.wrap(addr)
            return f"JZ (taken) {addr}"
        return f"JZ (not taken) {addr}"

    def _op_out(self, addr):
        self.output.append(self.regs.acc)
        return f"OUT {self.regs.acc}"

    def _op_halt(self, addr):
        self.regs.halted = True
        return "HALT"

    # ══════════════════════════════════════════════
    # Trace / Debug
    # ══════════════════════════════════════════════

    def enable_trace(self, enable: bool = True):
        """Enable per-instruction trace capture."""
        self._trace = enable

    def get_trace(self) -> str:
        return '\n'.join(self._trace_output)

    def clear_trace(self):
        self._trace_output.clear()

    def reset(self):
        """Zero PC/ACC/IR, clear Z and the halted latch. Memory is untouched."""
        self.regs.reset()
        self.output.clear()
        self.steps = 0
        self._trace_output.clear()
