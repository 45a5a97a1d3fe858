#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Static description of the M88k instruction set:
  - physical register enumeration (GPR, register pairs, extended, control)
  - CPU variants and their feature sets
  - operand classes (predicates used by the matcher)
  - opcode encoders and the candidate encoding table

Nothing in this module is mutated at runtime.
"""

from m88k_errors import InternalInvariant
from m88k_mc import (MCOperandKind, Fixup, FixupKind, TargetExpr, VariantKind,
                     evaluate_target)

# --------------------------------------------------
# Registers
# --------------------------------------------------
NO_REGISTER = 0

class RegClass:
    GPR = "GPR"
    GPR64 = "GPR64"
    XR = "XR"
    CR = "CR"
    FCR = "FCR"

SUB_HI = 1
SUB_LO = 2

class Register:
    def __init__(self, id, name, reg_class, num, alt_name=None):
        self.id = id
        self.name = name            # primary spelling, without '%'
        self.alt_name = alt_name
        self.reg_class = reg_class
        self.num = num              # hardware field value
        self.sub_regs = {}          # SUB_HI / SUB_LO -> register id

    def __repr__(self):
        return f"Register({self.name})"

GPR_ALT_NAMES = {0: "zero", 1: "rp", 30: "fp", 31: "sp"}
CR_ALT_NAMES = {0: "pid", 1: "psr", 2: "epsr", 3: "ssbr",
                4: "sxip", 5: "snip", 6: "sfip", 7: "vbr"}
FCR_ALT_NAMES = {0: "fpecr", 62: "fpsr", 63: "fpcr"}

def _build_registers():
    regs = [None]   # id 0 is NO_REGISTER
    def add(name, reg_class, num, alt_name=None):
        reg = Register(len(regs), name, reg_class, num, alt_name)
        regs.append(reg)
        return reg
    gprs = [add(f"r{n}", RegClass.GPR, n, GPR_ALT_NAMES.get(n)) for n in range(32)]
    for n in range(0, 32, 2):
        # the even register of a pair holds the high word
        pair = add(f"r{n}_r{n + 1}", RegClass.GPR64, n)
        pair.sub_regs[SUB_HI] = gprs[n].id
        pair.sub_regs[SUB_LO] = gprs[n + 1].id
    for n in range(32):
        add(f"x{n}", RegClass.XR, n)
    for n in range(64):
        add(f"cr{n}", RegClass.CR, n, CR_ALT_NAMES.get(n))
    for n in range(64):
        add(f"fcr{n}", RegClass.FCR, n, FCR_ALT_NAMES.get(n))
    return regs

REGISTERS = _build_registers()

# register pairs are never spelled in assembly text
REGISTER_NAMES = {r.name: r.id for r in REGISTERS[1:] if r.reg_class != RegClass.GPR64}
REGISTER_ALT_NAMES = {r.alt_name: r.id for r in REGISTERS[1:] if r.alt_name}

def match_register_name(name):
    """
    return: register id for a primary spelling, or NO_REGISTER
    """
    return REGISTER_NAMES.get(name.lower(), NO_REGISTER)

def match_register_alt_name(name):
    """
    return: register id for an alternate spelling, or NO_REGISTER
    """
    return REGISTER_ALT_NAMES.get(name.lower(), NO_REGISTER)

def is_physical_register(reg):
    return isinstance(reg, int) and 0 < reg < len(REGISTERS)

def get_register(reg):
    if not is_physical_register(reg):
        raise InternalInvariant(f"not a physical register: {reg!r}")
    return REGISTERS[reg]

def register_name(reg):
    return get_register(reg).name

def register_class(reg):
    return get_register(reg).reg_class

def get_sub_reg(reg, index):
    sub = get_register(reg).sub_regs.get(index)
    if sub is None:
        raise InternalInvariant(f"register {register_name(reg)} has no sub-register {index}")
    return sub

def gpr(n):
    return REGISTER_NAMES[f"r{n}"]

def gpr_pair(n):
    return REGISTERS[gpr(31) + 1 + n // 2].id

# --------------------------------------------------
# CPU variants / features
# --------------------------------------------------
FEATURE_MC88100 = "mc88100"
FEATURE_MC88110 = "mc88110"

# declaration order is the order features are listed in diagnostics
FEATURE_NAMES = [FEATURE_MC88100, FEATURE_MC88110]

CPU_VARIANTS = {
    "mc88000": frozenset(),
    "mc88100": frozenset({FEATURE_MC88100}),
    "mc88110": frozenset({FEATURE_MC88110}),
}

DEFAULT_CPU = "mc88100"

def compute_available_features(cpu):
    if cpu not in CPU_VARIANTS:
        raise ValueError(f"unknown CPU variant '{cpu}' (known: {', '.join(CPU_VARIANTS)})")
    return CPU_VARIANTS[cpu]

# --------------------------------------------------
# Operand classes
# --------------------------------------------------
class MatchDiag:
    INVALID_OPERAND = "invalid_operand"
    INVALID_BITFIELD_WIDTH = "invalid_bitfield_width"
    INVALID_BITFIELD_OFFSET = "invalid_bitfield_offset"
    INVALID_PIXEL_ROTATION_SIZE = "invalid_pixel_rotation_size"

MATCH_DIAG_MESSAGES = {
    MatchDiag.INVALID_BITFIELD_WIDTH: "bitfield width must be an immediate in the range [0, 31]",
    MatchDiag.INVALID_BITFIELD_OFFSET: "bitfield offset must be an immediate in the range [0, 31]",
    MatchDiag.INVALID_PIXEL_ROTATION_SIZE: "pixel rotation size must be an immediate in the range [0, 60]",
}

class OperandClass:
    """
    Predicate over one parsed operand slot.

    parser   - key of the custom micro-parser for this slot, if any
    diag     - MatchDiag reported when the predicate rejects the operand
    validate - ask the parser's extra class validation when the predicate fails
    """
    def __init__(self, name, predicate, parser=None, diag=MatchDiag.INVALID_OPERAND,
                 validate=False):
        self.name = name
        self.predicate = predicate
        self.parser = parser
        self.diag = diag
        self.validate = validate

    def accepts(self, op):
        return self.predicate(op)

    def __repr__(self):
        return f"OperandClass({self.name})"

def _reg_of(reg_class):
    return lambda op: op.is_reg() and register_class(op.get_reg()) == reg_class

def _imm_range(lo, hi):
    return lambda op: op.is_imm_in_range(lo, hi)

def _reloc_imm16(op):
    # constant in range, or a hi16()/lo16() half of an address
    if op.is_imm_in_range(0, 0xFFFF):
        return True
    return op.is_imm() and isinstance(op.get_imm(), TargetExpr)

def _token(text):
    return OperandClass(f"'{text}'", lambda op: op.is_token() and op.get_token() == text)

GPR = OperandClass("GPR", _reg_of(RegClass.GPR))
GPR64 = OperandClass("GPR64", _reg_of(RegClass.GPR64), validate=True)
XR = OperandClass("XR", _reg_of(RegClass.XR))
CR = OperandClass("CR", _reg_of(RegClass.CR))
FCR = OperandClass("FCR", _reg_of(RegClass.FCR))

U5IMM = OperandClass("U5Imm", _imm_range(0, 31))
U16IMM = OperandClass("U16Imm", _reloc_imm16)
VEC9 = OperandClass("Vec9", _imm_range(0, 511))
BF_WIDTH = OperandClass("BFWidth", _imm_range(0, 31), parser="bf_width",
                        diag=MatchDiag.INVALID_BITFIELD_WIDTH)
BF_OFFSET = OperandClass("BFOffset", _imm_range(0, 31), parser="bf_offset",
                         diag=MatchDiag.INVALID_BITFIELD_OFFSET)
PIXEL_ROT = OperandClass("PixelRot", _imm_range(0, 60), parser="pixel_rot",
                         diag=MatchDiag.INVALID_PIXEL_ROTATION_SIZE)
CCODE = OperandClass("CCode", _imm_range(0, 31), parser="condition_code")
PCREL16 = OperandClass("PCRel16", lambda op: op.is_imm(), parser="pcrel16")
PCREL26 = OperandClass("PCRel26", lambda op: op.is_imm(), parser="pcrel26")

TOK_LESS = _token("<")
TOK_GREATER = _token(">")
TOK_LBRAC = _token("[")
TOK_RBRAC = _token("]")

# --------------------------------------------------
# Encoders
# --------------------------------------------------
def _reg(op):
    if not op.is_reg():
        raise InternalInvariant(f"expected register operand, got {op!r}")
    return get_register(op.value).num

def _field(op, bits, fixup_kind, fixups, shift=0):
    """
    encode an immediate field, or record a fixup for a symbolic one.

    return: field value (0 when a fixup was recorded)
    """
    mask = (1 << bits) - 1
    if op.kind == MCOperandKind.IMMEDIATE:
        return (op.value >> shift) & mask
    if op.kind == MCOperandKind.EXPRESSION:
        value = evaluate_target(op.value)
        if value is not None:
            return (value >> shift) & mask
        kind = fixup_kind
        if isinstance(op.value, TargetExpr):
            kind = FixupKind.HI16 if op.value.variant == VariantKind.VK_ABS_HI else FixupKind.LO16
        fixups.append(Fixup(kind, op.value))
        return 0
    raise InternalInvariant(f"expected immediate operand, got {op!r}")

def enc_none(base, ops, fixups):
    return base

def enc_rrr(base, ops, fixups):
    return base | _reg(ops[0]) << 21 | _reg(ops[1]) << 16 | _reg(ops[2])

def enc_rri16(base, ops, fixups):
    return base | _reg(ops[0]) << 21 | _reg(ops[1]) << 16 | _field(ops[2], 16, FixupKind.ABS16, fixups)

def enc_rr2(base, ops, fixups):
    return base | _reg(ops[0]) << 21 | _reg(ops[1])

def enc_r2(base, ops, fixups):
    return base | _reg(ops[0])

def enc_rr1r2(base, ops, fixups):
    return base | _reg(ops[0]) << 16 | _reg(ops[1])

def enc_bitfield(base, ops, fixups):
    width = _field(ops[2], 5, FixupKind.ABS16, fixups)
    offset = _field(ops[3], 5, FixupKind.ABS16, fixups)
    return base | _reg(ops[0]) << 21 | _reg(ops[1]) << 16 | width << 5 | offset

def enc_rot(base, ops, fixups):
    return base | _reg(ops[0]) << 21 | _reg(ops[1]) << 16 | _field(ops[2], 5, FixupKind.ABS16, fixups)

def enc_pixel_rot(base, ops, fixups):
    rot = _field(ops[2], 6, FixupKind.ABS16, fixups)
    return base | _reg(ops[0]) << 21 | _reg(ops[1]) << 16 | (rot & 0x3C) << 5

def enc_br26(base, ops, fixups):
    return base | _field(ops[0], 26, FixupKind.PC26, fixups, shift=2)

def enc_cond16(base, ops, fixups):
    cond = _field(ops[0], 5, FixupKind.ABS16, fixups)
    return base | cond << 21 | _reg(ops[1]) << 16 | _field(ops[2], 16, FixupKind.PC16, fixups, shift=2)

def enc_trap(base, ops, fixups):
    cond = _field(ops[0], 5, FixupKind.ABS16, fixups)
    return base | cond << 21 | _reg(ops[1]) << 16 | _field(ops[2], 9, FixupKind.ABS16, fixups)

def enc_ldcr(base, ops, fixups):
    return base | _reg(ops[0]) << 21 | _reg(ops[1]) << 5

def enc_stcr(base, ops, fixups):
    src = _reg(ops[0])
    return base | src << 16 | _reg(ops[1]) << 5 | src

def enc_xcr(base, ops, fixups):
    src = _reg(ops[1])
    return base | _reg(ops[0]) << 21 | src << 16 | _reg(ops[2]) << 5 | src


class Opcode:
    def __init__(self, name, base, encoder):
        self.name = name
        self.base = base
        self.encoder = encoder

    def encode(self, operands):
        """
        return: (32-bit word, list of Fixup)
        """
        fixups = []
        word = self.encoder(self.base, operands, fixups)
        return word & 0xFFFFFFFF, fixups

    def __repr__(self):
        return f"Opcode({self.name}, 0x{self.base:08X})"


OPCODES = {}

def _opcode(name, base, encoder):
    if name in OPCODES:
        raise InternalInvariant(f"duplicate opcode '{name}'")
    OPCODES[name] = Opcode(name, base, encoder)
    return name

def get_opcode(name):
    opcode = OPCODES.get(name)
    if opcode is None:
        raise InternalInvariant(f"unknown opcode '{name}'")
    return opcode

def encode_instruction(inst):
    """
    encode an MCInst into its machine word.

    return: (32-bit word, list of Fixup)
    """
    return get_opcode(inst.opcode).encode(inst.operands)

# --------------------------------------------------
# Candidate encoding table
# --------------------------------------------------
class InstrEntry:
    def __init__(self, mnemonic, operand_classes, opcode, features=frozenset()):
        self.mnemonic = mnemonic
        self.operand_classes = tuple(operand_classes)
        self.opcode = opcode
        self.features = frozenset(features)

    def __repr__(self):
        classes = ", ".join(c.name for c in self.operand_classes)
        return f"InstrEntry({self.mnemonic} {classes} -> {self.opcode})"


def _build_table():
    table = []
    def entry(mnemonic, classes, name, base, encoder, features=()):
        table.append(InstrEntry(mnemonic, classes, _opcode(name, base, encoder), features))

    # integer arithmetic and logic: rD, rS1, rS2 / rD, rS1, imm16
    alu = [
        ("add", 0x70000000, 0xF4007000),
        ("addu", 0x60000000, 0xF4006000),
        ("sub", 0x74000000, 0xF4007400),
        ("subu", 0x64000000, 0xF4006400),
        ("and", 0x40000000, 0xF4004000),
        ("or", 0x58000000, 0xF4005800),
        ("xor", 0x50000000, 0xF4005000),
        ("cmp", 0x7C000000, 0xF4007C00),
        ("mul", 0x6C000000, 0xF4006C00),
        ("div", 0x78000000, 0xF4007800),
        ("divu", 0x68000000, 0xF4006800),
    ]
    for mnemonic, ri, rr in alu:
        stem = mnemonic.upper()
        entry(mnemonic, (GPR, GPR, GPR), f"{stem}rr", rr, enc_rrr)
        entry(mnemonic, (GPR, GPR, U16IMM), f"{stem}ri", ri, enc_rri16)

    # carry variants of add/sub
    for mnemonic, rr in (("add", 0xF4007000), ("addu", 0xF4006000),
                         ("sub", 0xF4007400), ("subu", 0xF4006400)):
        for suffix, bits in (("ci", 0x200), ("co", 0x100), ("cio", 0x300)):
            entry(f"{mnemonic}.{suffix}", (GPR, GPR, GPR),
                  f"{mnemonic.upper()}rr_{suffix.upper()}", rr | bits, enc_rrr)

    # upper-half immediates
    for mnemonic, ri in (("and.u", 0x44000000), ("or.u", 0x5C000000),
                         ("xor.u", 0x54000000), ("mask", 0x48000000),
                         ("mask.u", 0x4C000000)):
        entry(mnemonic, (GPR, GPR, U16IMM), mnemonic.upper().replace(".", "") + "ri",
              ri, enc_rri16)

    # loads and stores
    mem = [
        ("ld", 0x14000000, 0xF4001400, GPR),
        ("ld.b", 0x1C000000, 0xF4001C00, GPR),
        ("ld.bu", 0x0C000000, 0xF4000C00, GPR),
        ("ld.h", 0x18000000, 0xF4001800, GPR),
        ("ld.hu", 0x08000000, 0xF4000800, GPR),
        ("ld.d", 0x10000000, 0xF4001000, GPR64),
        ("st", 0x24000000, 0xF4002400, GPR),
        ("st.b", 0x2C000000, 0xF4002C00, GPR),
        ("st.h", 0x28000000, 0xF4002800, GPR),
        ("st.d", 0x20000000, 0xF4002000, GPR64),
    ]
    for mnemonic, ri, rr, data_class in mem:
        stem = mnemonic.upper().replace(".", "")
        entry(mnemonic, (data_class, GPR, U16IMM), f"{stem}ri", ri, enc_rri16)
        entry(mnemonic, (data_class, GPR, GPR), f"{stem}rr", rr, enc_rrr)
        entry(mnemonic, (data_class, GPR, TOK_LBRAC, GPR, TOK_RBRAC),
              f"{stem}rrsc", rr | 0x200, enc_rrr)

    # bitfields: rD, rS1, W5<O5> / rD, rS1, rS2
    for mnemonic, wo, rr in (("clr", 0xF0008000, 0xF4008000),
                             ("set", 0xF0008800, 0xF4008800),
                             ("ext", 0xF0009000, 0xF4009000),
                             ("extu", 0xF0009800, 0xF4009800),
                             ("mak", 0xF000A000, 0xF400A000)):
        stem = mnemonic.upper()
        entry(mnemonic, (GPR, GPR, BF_WIDTH, TOK_LESS, BF_OFFSET, TOK_GREATER),
              f"{stem}rwo", wo, enc_bitfield)
        entry(mnemonic, (GPR, GPR, GPR), f"{stem}rr", rr, enc_rrr)

    entry("rot", (GPR, GPR, TOK_LESS, BF_OFFSET, TOK_GREATER), "ROTrwo", 0xF000A800, enc_rot)
    entry("rot", (GPR, GPR, GPR), "ROTrr", 0xF400A800, enc_rrr)
    entry("ff0", (GPR, GPR), "FF0rr", 0xF400EC00, enc_rr2)
    entry("ff1", (GPR, GPR), "FF1rr", 0xF400E800, enc_rr2)

    # flow control
    for mnemonic, base in (("br", 0xC0000000), ("br.n", 0xC4000000),
                           ("bsr", 0xC8000000), ("bsr.n", 0xCC000000)):
        entry(mnemonic, (PCREL26,), mnemonic.upper().replace(".", ""), base, enc_br26)
    for mnemonic, base in (("bb0", 0xD0000000), ("bb0.n", 0xD4000000),
                           ("bb1", 0xD8000000), ("bb1.n", 0xDC000000)):
        entry(mnemonic, (U5IMM, GPR, PCREL16), mnemonic.upper().replace(".", ""), base, enc_cond16)
    entry("bcnd", (CCODE, GPR, PCREL16), "BCND", 0xE8000000, enc_cond16)
    entry("bcnd.n", (CCODE, GPR, PCREL16), "BCNDn", 0xEC000000, enc_cond16)
    for mnemonic, base in (("jmp", 0xF400C000), ("jmp.n", 0xF400C400),
                           ("jsr", 0xF400C800), ("jsr.n", 0xF400CC00)):
        entry(mnemonic, (GPR,), mnemonic.upper().replace(".", ""), base, enc_r2)

    # traps
    entry("tb0", (U5IMM, GPR, VEC9), "TB0", 0xF000D000, enc_trap)
    entry("tb1", (U5IMM, GPR, VEC9), "TB1", 0xF000D800, enc_trap)
    entry("tcnd", (CCODE, GPR, VEC9), "TCND", 0xF000E800, enc_trap)
    entry("tbnd", (GPR, GPR), "TBNDrr", 0xF400F800, enc_rr1r2)
    entry("rte", (), "RTE", 0xF400FC00, enc_none)

    # control registers
    entry("ldcr", (GPR, CR), "LDCR", 0x80004000, enc_ldcr)
    entry("stcr", (GPR, CR), "STCR", 0x80008000, enc_stcr)
    entry("xcr", (GPR, GPR, CR), "XCR", 0x8000C000, enc_xcr)
    entry("fldcr", (GPR, FCR), "FLDCR", 0x80004800, enc_ldcr)
    entry("fstcr", (GPR, FCR), "FSTCR", 0x80008800, enc_stcr)
    entry("fxcr", (GPR, GPR, FCR), "FXCR", 0x8000C800, enc_xcr)

    # floating point, single and double precision
    for mnemonic, base in (("fadd", 0x84002800), ("fsub", 0x84003000),
                           ("fmul", 0x84000000), ("fdiv", 0x84007000)):
        stem = mnemonic.upper()
        entry(f"{mnemonic}.sss", (GPR, GPR, GPR), f"{stem}sss", base, enc_rrr)
        entry(f"{mnemonic}.ddd", (GPR64, GPR64, GPR64), f"{stem}ddd", base | 0xA0, enc_rrr)

    # mc88110 graphics and trap extensions
    mc88110 = (FEATURE_MC88110,)
    entry("padd", (GPR64, GPR64, GPR64), "PADD", 0x88002000, enc_rrr, mc88110)
    entry("psub", (GPR64, GPR64, GPR64), "PSUB", 0x88003000, enc_rrr, mc88110)
    entry("pmul", (GPR64, GPR, GPR), "PMUL", 0x88000000, enc_rrr, mc88110)
    entry("prot", (GPR64, GPR64, PIXEL_ROT), "PROTri", 0x88007800, enc_pixel_rot, mc88110)
    entry("prot", (GPR64, GPR64, GPR), "PROTrr", 0x88007000, enc_rrr, mc88110)
    for n in (1, 2, 3):
        entry(f"illop{n}", (), f"ILLOP{n}", 0xF400FC00 | n, enc_none, mc88110)
    return table

INSTRUCTION_TABLE = _build_table()

MNEMONICS = []
for _e in INSTRUCTION_TABLE:
    if _e.mnemonic not in MNEMONICS:
        MNEMONICS.append(_e.mnemonic)
del _e

def candidates_for(mnemonic):
    """
    return: table entries for the mnemonic, in declaration order
    """
    return [e for e in INSTRUCTION_TABLE if e.mnemonic == mnemonic]
