#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Emission sinks for encoded instructions.

Streamer is the interface the parser and the lowering engine talk to.
ObjectStreamer encodes each MCInst into a 32-bit word, keeps one location
counter per section and records symbolic fields as fixups; relocation is
left to the linker.
"""

import logging

from m88k_errors import AsmError, InternalInvariant, RangeError
from m88k_isa import encode_instruction
from m88k_mc import MCInst, Fixup, FixupKind, evaluate_target

logger = logging.getLogger("rich")

WORD_SIZE = 4

# --------------------------------------------------
# Streamer interface
# --------------------------------------------------
class Streamer:
    def emit_instruction(self, inst):
        raise NotImplementedError

    def emit_label(self, name, loc=None):
        raise NotImplementedError

    def emit_directive_requires_88110(self):
        raise NotImplementedError

# --------------------------------------------------
# Records / sections
# --------------------------------------------------
class RecordType:
    INSTRUCTION = "instruction"
    DATA = "data"

class Record:
    def __init__(self, type, section, address, word, fixups, loc, inst=None):
        self.type = type
        self.section = section
        self.address = address
        self.word = word
        self.fixups = fixups
        self.loc = loc
        self.inst = inst

    def __repr__(self):
        return f"Record({self.type}, {self.section}, 0x{self.address:X}, 0x{self.word:08X})"

class Section:
    def __init__(self, name, start):
        self.name = name
        self.start = start
        self.address = start

    @property
    def size(self):
        return self.address - self.start

# --------------------------------------------------
# ObjectStreamer
# --------------------------------------------------
class ObjectStreamer(Streamer):
    def __init__(self, code_start=0x0, data_start=0x1000):
        self.sections = {
            ".text": Section(".text", code_start),
            ".data": Section(".data", data_start),
        }
        self.current = self.sections[".text"]
        self.records = []
        self.symbols = {}         # name -> (section, address)
        self.globals = set()
        self.requires_88110 = False

    @property
    def address(self):
        return self.current.address

    def switch_section(self, name):
        if name not in self.sections:
            raise AsmError(f"unknown section '{name}'")
        self.current = self.sections[name]
        logger.debug(f"switched to section {name} at 0x{self.address:X}")

    def emit_label(self, name, loc=None):
        if name in self.symbols:
            raise AsmError(f"symbol '{name}' is already defined", loc)
        self.symbols[name] = (self.current.name, self.address)
        logger.debug(f"label '{name}' = 0x{self.address:X} ({self.current.name})")

    def emit_global(self, name):
        self.globals.add(name)

    def emit_directive_requires_88110(self):
        self.requires_88110 = True
        logger.info("object requires mc88110")

    def emit_instruction(self, inst):
        if not isinstance(inst, MCInst) or inst.opcode is None:
            raise InternalInvariant(f"cannot emit {inst!r}")
        if self.address % WORD_SIZE:
            raise AsmError(f"instruction at unaligned address 0x{self.address:X}", inst.loc)
        word, fixups = encode_instruction(inst)
        record = Record(RecordType.INSTRUCTION, self.current.name, self.address, word,
                        fixups, inst.loc, inst)
        self._append(record)
        return record

    def emit_word(self, expr, loc=None):
        value = evaluate_target(expr)
        fixups = []
        if value is None:
            fixups.append(Fixup(FixupKind.ABS32, expr))
            value = 0
        elif not -(1 << 31) <= value <= 0xFFFFFFFF:
            raise RangeError("value out of range for .word", loc)
        record = Record(RecordType.DATA, self.current.name, self.address,
                        value & 0xFFFFFFFF, fixups, loc)
        self._append(record)
        return record

    def emit_align(self, alignment, loc=None):
        if alignment <= 0 or alignment & (alignment - 1):
            raise AsmError(f"alignment must be a power of two, got {alignment}", loc)
        pad = -self.address % alignment
        self.current.address += pad

    def _append(self, record):
        self.records.append(record)
        self.current.address += WORD_SIZE
        logger.debug(f"0x{record.address:08X}: {record.word:08X} {' '.join(str(f) for f in record.fixups)}")
