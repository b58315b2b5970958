"""
accsim — Byte-Addressable Memory with Wraparound Addressing

Memory is a flat bytearray of fixed capacity. There are no regions, no I/O
intercepts and no write protection: every address is folded into range
with modulo arithmetic (negative addresses included) and every value is
reduced to a byte before it is stored.

Memory never talks to the Channel. Whoever performs a transfer is the one
that signals it (the ProcessingUnit for fetch/read/write, nobody for
direct pokes from a driver).
"""

from typing import Dict, Iterable, Mapping, Optional

DEFAULT_SIZE = 64


class Memory:
    """Fixed-size array of byte cells.

    Usage:
        mem = Memory(64)
        mem.write(70, 300)    # stored at 6 as 44
        mem.read(-58)         # -> 44
    """

    def __init__(self, size: int = DEFAULT_SIZE):
        if size < 1:
            raise ValueError(f"Memory size must be positive, got {size}")
        self.size = size
        self._mem = bytearray(size)

    # --- Addressing ---

    def wrap(self, addr: int) -> int:
        """Fold any integer address into [0, size)."""
        return ((addr % self.size) + self.size) % self.size

    # --- Core read/write ---

    def read(self, addr: int) -> int:
        return self._mem[self.wrap(addr)]

    def write(self, addr: int, value: int):
        self._mem[self.wrap(addr)] = value % 256

    def fill(self, value: int = 0):
        """Set every cell to value (used for full clears)."""
        value %= 256
        for i in range(self.size):
            self._mem[i] = value

    # --- Bulk load ---

    def load_bytes(self, data: Iterable[int], start: int = 0):
        """Write data sequentially from start, wrapping past the top."""
        for i, byte in enumerate(data):
            self.write(start + i, byte)

    def load_data(self, mapping: Mapping[int, int]):
        """Apply a sparse address -> value preload."""
        for addr, value in mapping.items():
            self.write(addr, value)

    # --- Snapshots ---

    def snapshot(self) -> bytes:
        return bytes(self._mem)

    def diff_snapshots(self, snap_a: bytes, snap_b: bytes) -> Dict[int, tuple]:
        """Compare two snapshots, return {addr: (old, new)} for changed cells."""
        changes = {}
        for i in range(min(len(snap_a), len(snap_b))):
            if snap_a[i] != snap_b[i]:
                changes[i] = (snap_a[i], snap_b[i])
        return changes

    # --- Observer access ---

    def __len__(self) -> int:
        return self.size

    def __getitem__(self, addr: int) -> int:
        return self.read(addr)

    # --- Hex dump ---

    def hexdump(self, start: int = 0, length: Optional[int] = None) -> str:
        """Dump cells 16 per row as 'addr  hex bytes  | decimal values'."""
        if length is None:
            length = self.size
        lines = []
        for offset in range(0, length, 16):
            row = [self.read(start + offset + i)
                   for i in range(min(16, length - offset))]
            addr = self.wrap(start + offset)
            hex_bytes = ' '.join(f'{b:02X}' for b in row)
            dec_bytes = ' '.join(f'{b:3d}' for b in row)
            lines.append(f'{addr:04d}  {hex_bytes:<47}  | {dec_bytes}')
        return '\n'.join(lines)
