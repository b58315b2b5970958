"""
accsim — Instruction Set Table + Disassembler

Single-accumulator ISA. Every instruction is one opcode byte, optionally
followed by one operand byte (always a memory address):

  Byte  Mnemonic  Operand   Effect
  ----  --------  -------   ------------------------------------------
  0     NOP       —         nothing
  1     LOAD      addr      ACC <- M[addr]               (sets Z)
  2     STORE     addr      M[addr] <- ACC
  3     ADD       addr      ACC <- (ACC + M[addr]) & 0xFF (sets Z)
  4     SUB       addr      ACC <- (ACC - M[addr]) & 0xFF (sets Z)
  5     JMP       addr      PC <- addr
  6     JZ        addr      PC <- addr if Z
  7     OUT       —         publish ACC to observers
  255   HALT      —         stop the processing unit

Any other byte decodes as DATA: inert, never an illegal-opcode fault.
"""

from typing import Dict, List, Sequence, Tuple

# ──────────────────────────────────────────────
# Opcode table
# ──────────────────────────────────────────────

NOP = 0x00
LOAD = 0x01
STORE = 0x02
ADD = 0x03
SUB = 0x04
JMP = 0x05
JZ = 0x06
OUT = 0x07
HALT = 0xFF

# mnemonic -> opcode byte
OPCODES: Dict[str, int] = {
    'NOP':   NOP,
    'LOAD':  LOAD,
    'STORE': STORE,
    'ADD':   ADD,
    'SUB':   SUB,
    'JMP':   JMP,
    'JZ':    JZ,
    'OUT':   OUT,
    'HALT':  HALT,
}

# opcode byte -> mnemonic
OPCODE_NAMES: Dict[int, str] = {v: k for k, v in OPCODES.items()}

# Opcodes followed by one address byte
OPERAND_OPCODES = frozenset([LOAD, STORE, ADD, SUB, JMP, JZ])

DATA = 'DATA'


def has_operand(opcode: int) -> bool:
    """True if the opcode consumes the byte after it as an address."""
    return opcode in OPERAND_OPCODES


def decode_opcode(byte: int) -> Tuple[str, bool]:
    """Map an opcode byte to (mnemonic, has_operand).

    Unknown values decode to ('DATA', False) so the processing unit can treat
    them as inert data instead of raising.
    """
    name = OPCODE_NAMES.get(byte & 0xFF)
    if name is None:
        return DATA, False
    return name, has_operand(byte & 0xFF)


# ──────────────────────────────────────────────
# Disassembler
# ──────────────────────────────────────────────

def disassemble(data: Sequence[int], start: int = 0) -> List[Tuple[int, bytes, str]]:
    """Walk a byte program linearly and return (addr, raw_bytes, text) rows.

    A truncated trailing operand is shown as '??'.
    """
    rows = []
    i = 0
    while i < len(data):
        op = data[i] & 0xFF
        mnem, takes_operand = decode_opcode(op)
        addr = start + i
        if mnem == DATA:
            rows.append((addr, bytes([op]), f"DATA {op}"))
            i += 1
            continue
        if takes_operand:
            if i + 1 < len(data):
                operand = data[i + 1] & 0xFF
                rows.append((addr, bytes([op, operand]), f"{mnem} {operand}"))
            else:
                rows.append((addr, bytes([op]), f"{mnem} ??"))
            i += 2
            continue
        rows.append((addr, bytes([op]), mnem))
        i += 1
    return rows


def format_disassembly(data: Sequence[int], start: int = 0) -> str:
    """Render disassemble() output as listing text."""
    lines = []
    for addr, raw, text in disassemble(data, start):
        hex_str = ' '.join(f'{b:02X}' for b in raw)
        lines.append(f"{addr:04d}  {hex_str:<6}  {text}")
    return '\n'.join(lines)
