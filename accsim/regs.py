"""
accsim — Processing Unit Register Set

Register model:
  PC     — program counter, index of the next byte to fetch (0..size-1)
  ACC    — 8-bit accumulator, all arithmetic wraps modulo 256
  IR     — instruction register, last fetched opcode byte
  Z      — zero flag, set by LOAD/ADD/SUB when the result is 0
  HALTED — one-way latch set by HALT, cleared only by reset()
"""

from typing import Dict


class Registers:
    """Processing unit register set."""

    __slots__ = ('pc', 'acc', 'ir', 'zero', 'halted')

    def __init__(self):
        self.pc: int = 0
        self.acc: int = 0
        self.ir: int = 0
        self.zero: bool = False
        self.halted: bool = False

    @property
    def flags(self) -> Dict[str, bool]:
        """Flag dict in the shape observers receive (a fresh copy each call)."""
        return {'zero': self.zero}

    def set_acc(self, value: int):
        """Store an arithmetic/load result and update Z from it."""
        self.acc = value & 0xFF
        self.zero = self.acc == 0

    def display(self) -> str:
        return (f"PC={self.pc:3d} ACC={self.acc:3d} IR={self.ir:3d} "
                f"Z={int(self.zero)} H={int(self.halted)}")

    def reset(self):
        """Back to power-on state. Memory is not part of the register set."""
        self.pc = 0
        self.acc = 0
        self.ir = 0
        self.zero = False
        self.halted = False
