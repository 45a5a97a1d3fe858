#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Machine-code level objects shared by the parser and the lowering engine:
  - expression tree (constant, symbol reference, binary add, hi16/lo16 marker)
  - MCOperand / MCInst, the encoded instruction handed to a streamer
  - Fixup, a symbolic field left for the linker
"""

# --------------------------------------------------
# Expressions
# --------------------------------------------------
class ExprKind:
    CONSTANT = "constant"
    SYMBOL_REF = "symbol_ref"
    BINARY = "binary"
    TARGET = "target"

class VariantKind:
    VK_NONE = None
    VK_ABS_HI = "hi16"
    VK_ABS_LO = "lo16"


class ConstantExpr:
    kind = ExprKind.CONSTANT

    def __init__(self, value):
        self.value = value

    def __eq__(self, other):
        return isinstance(other, ConstantExpr) and self.value == other.value

    def __hash__(self):
        return hash((self.kind, self.value))

    def __repr__(self):
        return f"ConstantExpr({self.value})"

    def __str__(self):
        return str(self.value)


class SymbolRefExpr:
    kind = ExprKind.SYMBOL_REF

    def __init__(self, name, variant=VariantKind.VK_NONE):
        self.name = name
        self.variant = variant

    def __eq__(self, other):
        return (isinstance(other, SymbolRefExpr)
                and self.name == other.name and self.variant == other.variant)

    def __hash__(self):
        return hash((self.kind, self.name, self.variant))

    def __repr__(self):
        return f"SymbolRefExpr({self.name!r})"

    def __str__(self):
        return self.name


class BinaryExpr:
    kind = ExprKind.BINARY
    ADD = "+"

    def __init__(self, op, lhs, rhs):
        self.op = op
        self.lhs = lhs
        self.rhs = rhs

    def __eq__(self, other):
        return (isinstance(other, BinaryExpr) and self.op == other.op
                and self.lhs == other.lhs and self.rhs == other.rhs)

    def __hash__(self):
        return hash((self.kind, self.op, self.lhs, self.rhs))

    def __repr__(self):
        return f"BinaryExpr({self.op!r}, {self.lhs!r}, {self.rhs!r})"

    def __str__(self):
        # sym + -4 prints as sym-4
        if isinstance(self.rhs, ConstantExpr) and self.rhs.value < 0:
            return f"{self.lhs}-{-self.rhs.value}"
        return f"{self.lhs}{self.op}{self.rhs}"


class TargetExpr:
    """hi16()/lo16() wrapper: the expression names one half of a split address."""
    kind = ExprKind.TARGET

    def __init__(self, variant, sub_expr):
        self.variant = variant
        self.sub_expr = sub_expr

    def __eq__(self, other):
        return (isinstance(other, TargetExpr) and self.variant == other.variant
                and self.sub_expr == other.sub_expr)

    def __hash__(self):
        return hash((self.kind, self.variant, self.sub_expr))

    def __repr__(self):
        return f"TargetExpr({self.variant!r}, {self.sub_expr!r})"

    def __str__(self):
        return f"{self.variant}({self.sub_expr})"


def create_add(lhs, rhs):
    """
    build lhs + rhs, folding the two-constant case.

    return: expression node
    """
    if isinstance(lhs, ConstantExpr) and isinstance(rhs, ConstantExpr):
        return ConstantExpr(lhs.value + rhs.value)
    return BinaryExpr(BinaryExpr.ADD, lhs, rhs)

def evaluate_as_constant(expr):
    """
    return: int value when the expression is a bare constant, otherwise None
    """
    if isinstance(expr, ConstantExpr):
        return expr.value
    return None

def evaluate_target(expr):
    """
    fold hi16/lo16 of a constant into its 16-bit half.

    return: int or None if the expression is not constant-foldable
    """
    if isinstance(expr, TargetExpr):
        value = evaluate_target(expr.sub_expr)
        if value is None:
            return None
        if expr.variant == VariantKind.VK_ABS_HI:
            return (value >> 16) & 0xFFFF
        return value & 0xFFFF
    if isinstance(expr, BinaryExpr):
        lhs = evaluate_target(expr.lhs)
        rhs = evaluate_target(expr.rhs)
        if lhs is None or rhs is None:
            return None
        return lhs + rhs
    return evaluate_as_constant(expr)

# --------------------------------------------------
# MCOperand / MCInst
# --------------------------------------------------
class MCOperandKind:
    REGISTER = "reg"
    IMMEDIATE = "imm"
    EXPRESSION = "expr"

class MCOperand:
    def __init__(self, kind, value):
        self.kind = kind
        self.value = value

    @classmethod
    def create_reg(cls, reg):
        return cls(MCOperandKind.REGISTER, reg)

    @classmethod
    def create_imm(cls, imm):
        return cls(MCOperandKind.IMMEDIATE, imm)

    @classmethod
    def create_expr(cls, expr):
        return cls(MCOperandKind.EXPRESSION, expr)

    def is_reg(self):
        return self.kind == MCOperandKind.REGISTER

    def is_imm(self):
        return self.kind == MCOperandKind.IMMEDIATE

    def is_expr(self):
        return self.kind == MCOperandKind.EXPRESSION

    def __eq__(self, other):
        return (isinstance(other, MCOperand) and self.kind == other.kind
                and self.value == other.value)

    def __repr__(self):
        return f"MCOperand({self.kind}, {self.value!r})"


class MCInst:
    def __init__(self, opcode=None, operands=None, loc=None):
        self.opcode = opcode
        self.operands = list(operands) if operands else []
        self.loc = loc

    def add_operand(self, op):
        self.operands.append(op)

    def __eq__(self, other):
        return (isinstance(other, MCInst) and self.opcode == other.opcode
                and self.operands == other.operands)

    def __repr__(self):
        return f"MCInst({self.opcode!r}, {self.operands!r})"

# --------------------------------------------------
# Fixups
# --------------------------------------------------
class FixupKind:
    PC16 = "FIXUP_M88K_PC16"
    PC26 = "FIXUP_M88K_PC26"
    ABS16 = "FIXUP_M88K_16"
    HI16 = "FIXUP_M88K_HI16"
    LO16 = "FIXUP_M88K_LO16"
    ABS32 = "FIXUP_M88K_32"

class Fixup:
    def __init__(self, kind, expr, offset=0):
        self.kind = kind
        self.expr = expr
        self.offset = offset

    def __eq__(self, other):
        return (isinstance(other, Fixup) and self.kind == other.kind
                and self.expr == other.expr and self.offset == other.offset)

    def __repr__(self):
        return f"Fixup({self.kind}, {self.expr!r}, offset={self.offset})"

    def __str__(self):
        return f"{self.kind}({self.expr})"
