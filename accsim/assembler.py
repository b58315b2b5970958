"""
Two-Pass Assembler for the accsim instruction set.

Input:  Lines of text (a list of lines or one string)
Output: (program bytes, sparse data preload {addr: value})

Source format, one statement per line, mnemonics case-insensitive:

    ; sum two cells
    start:  LOAD 10        ; ACC <- M[10]
            ADD  11
            OUT
            STORE 12
            HALT
            DATA 10 7      ; preload M[10] = 7
            DATA 11 3

  - Instruction lines append the opcode byte, then the operand byte if a
    second token is present.
  - DATA addr value records a preload; a later DATA for the same address wins.
  - Operands: decimal (optionally signed), $FF / 0xFF hex, %1010 binary,
    or a label name.
  - Labels: 'name:' alone on a line or in front of an instruction.

How the two-pass algorithm works:
  Pass 1: Walk all lines, give each label the address of the next emitted
          byte (origin + program length so far).
  Pass 2: Emit bytes. All labels are known, so forward jumps resolve.

Bad input never raises from Assembler.assemble(); it comes back as
line-indexed diagnostics on the AssemblyResult. Unknown mnemonics are a
warning and the line is skipped; malformed operands are errors. The
assemble() helper raises AssemblerError when the result has errors.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .isa import OPCODES, has_operand

__all__ = ['Assembler', 'AssemblerError', 'AssemblyResult', 'Diagnostic', 'assemble']

log = logging.getLogger(__name__)

ERROR = 'error'
WARNING = 'warning'

_LABEL_RE = re.compile(r'^[A-Za-z_.][A-Za-z0-9_.]*$')


@dataclass
class Diagnostic:
    """One problem found on one source line (line_num is 1-based)."""
    line_num: int
    severity: str
    message: str
    text: str = ""

    def __str__(self):
        return f"Line {self.line_num}: {self.severity}: {self.message}"


class AssemblerError(Exception):
    """Raised by assemble() / raise_for_errors() when assembly failed."""
    def __init__(self, message: str, line_num: int = 0,
                 diagnostics: Optional[List[Diagnostic]] = None):
        self.message = message
        self.line_num = line_num
        self.diagnostics = diagnostics or []
        super().__init__(f"Line {line_num}: {message}" if line_num else message)


@dataclass
class AssemblyResult:
    """Program bytes, data preload and every diagnostic from one assembly."""
    program: List[int] = field(default_factory=list)
    data: Dict[int, int] = field(default_factory=dict)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    symbols: Dict[str, int] = field(default_factory=dict)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == ERROR]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == WARNING]

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self):
        errors = self.errors
        if not errors:
            return
        if len(errors) == 1:
            raise AssemblerError(errors[0].message, errors[0].line_num, errors)
        raise AssemblerError(
            "Assembly failed:\n" + "\n".join(str(e) for e in errors),
            diagnostics=errors)


# ──────────────────────────────────────────────
# Line Parser
# ──────────────────────────────────────────────

@dataclass
class AsmLine:
    """Parsed assembly source line."""
    label: Optional[str] = None
    mnemonic: Optional[str] = None
    args: List[str] = field(default_factory=list)
    comment: Optional[str] = None
    line_num: int = 0
    raw: str = ""


def _parse_line(line: str, line_num: int) -> AsmLine:
    """Split one line into label, mnemonic, args and comment."""
    result = AsmLine(line_num=line_num, raw=line)

    text = line
    semi_pos = text.find(';')
    if semi_pos >= 0:
        result.comment = text[semi_pos + 1:].strip()
        text = text[:semi_pos]

    tokens = text.split()
    if not tokens:
        return result

    if tokens[0].endswith(':'):
        result.label = tokens[0][:-1]
        tokens = tokens[1:]
        if not tokens:
            return result

    result.mnemonic = tokens[0].upper()
    result.args = tokens[1:]
    return result


def _parse_value(text: str, symbols: Dict[str, int], line_num: int) -> int:
    """Parse a numeric operand or label reference.
    Supports: 123, -4 (decimal), $FF, 0xFF (hex), %1010 (binary), LABEL
    """
    text = text.strip()
    try:
        if text.startswith('$'):
            return int(text[1:], 16)
        if text.lower().startswith(('0x', '-0x')):
            return int(text, 16)
        if text.startswith('%'):
            return int(text[1:], 2)
        if text.lstrip('+-').isdigit():
            return int(text)
    except ValueError:
        raise AssemblerError(f"Invalid number: '{text}'", line_num)

    if text in symbols:
        return symbols[text]
    if _LABEL_RE.match(text):
        raise AssemblerError(f"Undefined label: '{text}'", line_num)
    raise AssemblerError(f"Invalid operand: '{text}'", line_num)


# ──────────────────────────────────────────────
# The Assembler
# ──────────────────────────────────────────────

class Assembler:
    """Two-pass assembler producing a program and a data preload.

    Usage:
        asm = Assembler()
        result = asm.assemble(["LOAD 10", "HALT", "DATA 10 7"])
        result.program    # [1, 10, 255]
        result.data       # {10: 7}
        print(asm.get_listing())
    """

    def __init__(self, origin: int = 0, strict: bool = False):
        self.origin = origin                  # Address labels are relative to
        self.strict = strict                  # Promote warnings to errors
        self.symbols: Dict[str, int] = {}     # Label table: name -> address
        self._lines: List[AsmLine] = []
        self._diagnostics: List[Diagnostic] = []
        self._emitted: List[Tuple[AsmLine, int, List[int]]] = []

    def assemble(self, source: Union[str, Sequence[str]]) -> AssemblyResult:
        """Assemble source lines. Never raises for bad input."""
        if isinstance(source, str):
            source = source.splitlines()

        self.symbols = {}
        self._diagnostics = []
        self._emitted = []
        self._lines = [_parse_line(line.strip(), i)
                       for i, line in enumerate(source, 1)]

        self._pass1()
        result = self._pass2()
        result.diagnostics = list(self._diagnostics)
        result.symbols = dict(self.symbols)

        for diag in result.warnings:
            log.warning("%s", diag)
        if result.errors:
            log.debug("Assembly produced %d error(s)", len(result.errors))
        return result

    # --- diagnostics ---

    def _report(self, line: AsmLine, severity: str, message: str):
        if severity == WARNING and self.strict:
            severity = ERROR
        self._diagnostics.append(
            Diagnostic(line.line_num, severity, message, line.raw))

    # --- pass 1 ---

    def _pass1(self):
        """Assign every label the address of the next emitted byte."""
        pc = self.origin
        for line in self._lines:
            if line.label is not None:
                if not _LABEL_RE.match(line.label):
                    self._report(line, ERROR, f"Invalid label name: '{line.label}'")
                elif line.label.upper() in OPCODES or line.label.upper() == 'DATA':
                    self._report(line, ERROR, f"Label shadows a mnemonic: '{line.label}'")
                elif line.label in self.symbols:
                    self._report(line, ERROR, f"Duplicate label: '{line.label}'")
                else:
                    self.symbols[line.label] = pc
            pc += self._size(line)

    @staticmethod
    def _size(line: AsmLine) -> int:
        mnem = line.mnemonic
        if mnem is None or mnem not in OPCODES:
            return 0
        if has_operand(OPCODES[mnem]) and not line.args:
            return 0
        return 2 if line.args else 1

    # --- pass 2 ---

    def _pass2(self) -> AssemblyResult:
        result = AssemblyResult()
        for line in self._lines:
            mnem = line.mnemonic
            if mnem is None:
                continue
            try:
                if mnem == 'DATA':
                    self._pass2_data(line, result)
                elif mnem in OPCODES:
                    self._pass2_instruction(line, result)
                else:
                    self._report(line, WARNING, f"Unknown mnemonic '{mnem}' ignored")
            except AssemblerError as e:
                self._report(line, ERROR, e.message)
        return result

    def _pass2_data(self, line: AsmLine, result: AssemblyResult):
        if len(line.args) != 2:
            raise AssemblerError(
                f"DATA needs 'addr value', got {len(line.args)} argument(s)",
                line.line_num)
        addr = _parse_value(line.args[0], self.symbols, line.line_num)
        value = _parse_value(line.args[1], self.symbols, line.line_num)
        result.data[addr] = value

    def _pass2_instruction(self, line: AsmLine, result: AssemblyResult):
        opcode = OPCODES[line.mnemonic]
        if has_operand(opcode) and not line.args:
            raise AssemblerError(f"{line.mnemonic} requires an address operand",
                                 line.line_num)

        out = [opcode]
        if line.args:
            out.append(_parse_value(line.args[0], self.symbols, line.line_num))
            if not has_operand(opcode):
                self._report(line, WARNING,
                             f"{line.mnemonic} takes no operand; emitted as data byte")
            if len(line.args) > 1:
                self._report(line, WARNING,
                             f"Extra tokens ignored: {' '.join(line.args[1:])}")

        self._emitted.append((line, self.origin + len(result.program), out))
        result.program.extend(out)

    # --- listing ---

    def get_listing(self) -> str:
        """Human-readable listing of the last assembly: address, bytes, source."""
        lines = [f"{'ADDR':>4}  {'BYTES':<8}  SOURCE", "-" * 40]
        emitted = {id(line): (addr, data) for line, addr, data in self._emitted}
        for asmline in self._lines:
            raw = asmline.raw.strip()
            if id(asmline) in emitted:
                addr, data = emitted[id(asmline)]
                hex_str = ' '.join(f'{b & 0xFF:02X}' for b in data)
                lines.append(f"{addr:04d}  {hex_str:<8}  {raw}")
            elif raw:
                lines.append(f"{'':4}  {'':8}  {raw}")
        return '\n'.join(lines)


# ──────────────────────────────────────────────
# Convenience functions
# ──────────────────────────────────────────────

def assemble(source: Union[str, Sequence[str]], strict: bool = False
             ) -> Tuple[List[int], Dict[int, int]]:
    """Assemble source, return (program, data). Raises AssemblerError on errors."""
    result = Assembler(strict=strict).assemble(source)
    result.raise_for_errors()
    return result.program, result.data
