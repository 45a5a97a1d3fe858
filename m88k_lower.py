#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Lowering of selected machine instructions into MCInsts.

The instruction-selection stage hands over a MachineInstr whose operands are
registers, immediates and symbolic references. M88kMCInstLower turns each one
into the MCOperand the encoder expects:
  - implicit registers and register masks are dropped
  - a register pair is replaced by its high half
  - symbolic operands become symbol expressions, optionally with a constant
    offset and a hi16/lo16 relocation marker

Anything outside that contract raises InternalInvariant.
"""

import logging

from m88k_errors import InternalInvariant
from m88k_isa import (RegClass, SUB_HI, get_sub_reg, is_physical_register,
                      register_class)
from m88k_mc import (ConstantExpr, MCInst, MCOperand, SymbolRefExpr,
                     TargetExpr, VariantKind, create_add)

logger = logging.getLogger("rich")

# --------------------------------------------------
# Machine operands
# --------------------------------------------------
class MachineOperandType:
    REGISTER = "register"
    IMMEDIATE = "immediate"
    CIMMEDIATE = "cimmediate"
    FP_IMMEDIATE = "fp_immediate"
    MACHINE_BASIC_BLOCK = "machine_basic_block"
    FRAME_INDEX = "frame_index"
    CONSTANT_POOL_INDEX = "constant_pool_index"
    JUMP_TABLE_INDEX = "jump_table_index"
    EXTERNAL_SYMBOL = "external_symbol"
    GLOBAL_ADDRESS = "global_address"
    BLOCK_ADDRESS = "block_address"
    REGISTER_MASK = "register_mask"
    MC_SYMBOL = "mc_symbol"
    METADATA = "metadata"

class TargetFlags:
    MO_NO_FLAG = 0
    MO_ABS_HI = 1
    MO_ABS_LO = 2

_FLAG_VARIANTS = {
    TargetFlags.MO_NO_FLAG: VariantKind.VK_NONE,
    TargetFlags.MO_ABS_HI: VariantKind.VK_ABS_HI,
    TargetFlags.MO_ABS_LO: VariantKind.VK_ABS_LO,
}


class MachineOperand:
    def __init__(self, type, value=None, offset=0, target_flags=TargetFlags.MO_NO_FLAG,
                 sub_reg=0, implicit=False):
        self.type = type
        self.value = value
        self.offset = offset
        self.target_flags = target_flags
        self.sub_reg = sub_reg
        self.implicit = implicit

    @classmethod
    def create_reg(cls, reg, implicit=False, sub_reg=0):
        return cls(MachineOperandType.REGISTER, reg, sub_reg=sub_reg, implicit=implicit)

    @classmethod
    def create_imm(cls, imm):
        return cls(MachineOperandType.IMMEDIATE, imm)

    @classmethod
    def create_mbb(cls, mbb, target_flags=TargetFlags.MO_NO_FLAG):
        return cls(MachineOperandType.MACHINE_BASIC_BLOCK, mbb, target_flags=target_flags)

    @classmethod
    def create_global_address(cls, global_value, offset=0, target_flags=TargetFlags.MO_NO_FLAG):
        return cls(MachineOperandType.GLOBAL_ADDRESS, global_value, offset, target_flags)

    @classmethod
    def create_external_symbol(cls, name, offset=0, target_flags=TargetFlags.MO_NO_FLAG):
        return cls(MachineOperandType.EXTERNAL_SYMBOL, name, offset, target_flags)

    @classmethod
    def create_mc_symbol(cls, name, target_flags=TargetFlags.MO_NO_FLAG):
        return cls(MachineOperandType.MC_SYMBOL, name, target_flags=target_flags)

    @classmethod
    def create_jti(cls, index, target_flags=TargetFlags.MO_NO_FLAG):
        return cls(MachineOperandType.JUMP_TABLE_INDEX, index, target_flags=target_flags)

    @classmethod
    def create_cpi(cls, index, offset=0, target_flags=TargetFlags.MO_NO_FLAG):
        return cls(MachineOperandType.CONSTANT_POOL_INDEX, index, offset, target_flags)

    @classmethod
    def create_block_address(cls, block_address, offset=0, target_flags=TargetFlags.MO_NO_FLAG):
        return cls(MachineOperandType.BLOCK_ADDRESS, block_address, offset, target_flags)

    @classmethod
    def create_reg_mask(cls, mask):
        return cls(MachineOperandType.REGISTER_MASK, mask)

    @classmethod
    def create_frame_index(cls, index):
        return cls(MachineOperandType.FRAME_INDEX, index)

    def is_reg(self):
        return self.type == MachineOperandType.REGISTER

    def is_implicit(self):
        return self.is_reg() and self.implicit

    def is_reg_mask(self):
        return self.type == MachineOperandType.REGISTER_MASK

    def __repr__(self):
        return f"MachineOperand({self.type}, {self.value!r})"


class MachineBasicBlock:
    def __init__(self, number, function_number=0):
        self.number = number
        self.function_number = function_number

class BlockAddress:
    def __init__(self, function, block):
        self.function = function
        self.block = block

class MachineInstr:
    def __init__(self, opcode, operands=None):
        self.opcode = opcode
        self.operands = list(operands) if operands else []

    def add_operand(self, mo):
        self.operands.append(mo)

# --------------------------------------------------
# Symbol naming
# --------------------------------------------------
class SymbolNamer:
    """
    ELF symbol names for the operands that reference code or data
    indirectly (labels, jump tables, constant pools, block addresses).
    """
    def __init__(self, function_number=0, private_prefix=".L"):
        self.function_number = function_number
        self.private_prefix = private_prefix
        self._block_address_symbols = {}

    def get_symbol(self, global_value):
        return global_value if isinstance(global_value, str) else global_value.name

    def get_external_symbol_symbol(self, name):
        return name

    def get_mbb_symbol(self, mbb):
        return f"{self.private_prefix}BB{mbb.function_number}_{mbb.number}"

    def get_jti_symbol(self, index):
        return f"{self.private_prefix}JTI{self.function_number}_{index}"

    def get_cpi_symbol(self, index):
        return f"{self.private_prefix}CPI{self.function_number}_{index}"

    def get_block_address_symbol(self, block_address):
        key = (block_address.function, block_address.block)
        if key not in self._block_address_symbols:
            self._block_address_symbols[key] = f"{self.private_prefix}tmp{len(self._block_address_symbols)}"
        return self._block_address_symbols[key]

# --------------------------------------------------
# M88kMCInstLower
# --------------------------------------------------
class M88kMCInstLower:
    def __init__(self, namer=None):
        self.namer = namer if namer is not None else SymbolNamer()

    def lower_symbol_operand(self, mo):
        if mo.target_flags not in _FLAG_VARIANTS:
            raise InternalInvariant(f"invalid target flag {mo.target_flags!r}")
        variant = _FLAG_VARIANTS[mo.target_flags]

        has_offset = True
        t = mo.type
        if t == MachineOperandType.MACHINE_BASIC_BLOCK:
            symbol = self.namer.get_mbb_symbol(mo.value)
            has_offset = False
        elif t == MachineOperandType.GLOBAL_ADDRESS:
            symbol = self.namer.get_symbol(mo.value)
        elif t == MachineOperandType.EXTERNAL_SYMBOL:
            symbol = self.namer.get_external_symbol_symbol(mo.value)
        elif t == MachineOperandType.JUMP_TABLE_INDEX:
            symbol = self.namer.get_jti_symbol(mo.value)
            has_offset = False
        elif t == MachineOperandType.CONSTANT_POOL_INDEX:
            symbol = self.namer.get_cpi_symbol(mo.value)
        elif t == MachineOperandType.BLOCK_ADDRESS:
            symbol = self.namer.get_block_address_symbol(mo.value)
        else:
            raise InternalInvariant(f"unknown operand type {t!r}")

        expr = SymbolRefExpr(symbol)
        if has_offset and mo.offset:
            expr = create_add(expr, ConstantExpr(mo.offset))
        if variant is not VariantKind.VK_NONE:
            expr = TargetExpr(variant, expr)
        return MCOperand.create_expr(expr)

    def lower_operand(self, mo):
        t = mo.type
        if t == MachineOperandType.REGISTER:
            reg = mo.value
            if not is_physical_register(reg):
                raise InternalInvariant(f"register operand is not physical: {reg!r}")
            if mo.sub_reg:
                raise InternalInvariant("subregs should be eliminated")
            # a pair is encoded through its high half; the low half is implied
            if register_class(reg) == RegClass.GPR64:
                reg = get_sub_reg(reg, SUB_HI)
            return MCOperand.create_reg(reg)

        if t == MachineOperandType.IMMEDIATE:
            return MCOperand.create_imm(mo.value)

        if t in (MachineOperandType.MACHINE_BASIC_BLOCK,
                 MachineOperandType.GLOBAL_ADDRESS,
                 MachineOperandType.EXTERNAL_SYMBOL,
                 MachineOperandType.MC_SYMBOL,
                 MachineOperandType.JUMP_TABLE_INDEX,
                 MachineOperandType.CONSTANT_POOL_INDEX,
                 MachineOperandType.BLOCK_ADDRESS):
            return self.lower_symbol_operand(mo)

        raise InternalInvariant(f"unexpected MachineOperand type {t!r}")

    def lower(self, mi):
        """
        lower one machine instruction.

        return: MCInst
        """
        out = MCInst(mi.opcode)
        for mo in mi.operands:
            if mo.is_implicit() or mo.is_reg_mask():
                continue
            out.add_operand(self.lower_operand(mo))
        logger.debug(f"lowered {mi.opcode}: {out.operands}")
        return out

    def lower_all(self, instrs, streamer):
        """
        lower each instruction and hand it to the streamer.

        return: list of MCInst
        """
        lowered = []
        for mi in instrs:
            inst = self.lower(mi)
            streamer.emit_instruction(inst)
            lowered.append(inst)
        return lowered
