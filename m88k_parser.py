#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
M88k operand parser and instruction matcher.

M88kAsmParser takes the tokens of one statement (mnemonic already consumed
by the caller), builds the operand list, selects a candidate encoding from
m88k_isa.INSTRUCTION_TABLE and hands the resulting MCInst to the streamer.

Errors are raised as AsmError subclasses; the caller reports them and skips
to the next statement. Warnings go straight to the DiagnosticEngine.
"""

import logging

from m88k_errors import (DiagnosticEngine, AsmSyntaxError, RangeError,
                         UnknownRegister, UnknownMnemonic, MissingFeature,
                         InvalidOperandClass, InternalInvariant)
from m88k_isa import (DEFAULT_CPU, FEATURE_NAMES, GPR64, MATCH_DIAG_MESSAGES,
                      MNEMONICS, NO_REGISTER, MatchDiag, RegClass,
                      candidates_for, compute_available_features,
                      match_register_alt_name, match_register_name,
                      register_class, register_name)
from m88k_lexer import TokenKind, can_start_expression, parse_expression
from m88k_mc import (BinaryExpr, ConstantExpr, MCInst, MCOperand,
                     evaluate_as_constant)

logger = logging.getLogger("rich")

# condition-code field values for bcnd / tcnd
CONDITION_CODES = {
    "eq0": 0x2,
    "ne0": 0xD,
    "gt0": 0x1,
    "lt0": 0xC,
    "ge0": 0x3,
    "le0": 0xE,
}

MAX_EDIT_DISTANCE = 2

# --------------------------------------------------
# Parsed operands
# --------------------------------------------------
class OperandKind:
    TOKEN = "token"
    REGISTER = "register"
    IMMEDIATE = "immediate"

class Operand:
    """
    One parsed operand: a literal token, a register or an immediate expression.

    Equality compares kind and payload only, so operand lists parsed from
    different spellings of the same thing compare equal.
    """
    def __init__(self, kind, start, end, value):
        self.kind = kind
        self.start = start
        self.end = end
        self.value = value

    @classmethod
    def create_token(cls, text, loc):
        return cls(OperandKind.TOKEN, loc, loc, text)

    @classmethod
    def create_reg(cls, reg, start, end):
        return cls(OperandKind.REGISTER, start, end, reg)

    @classmethod
    def create_imm(cls, expr, start, end):
        return cls(OperandKind.IMMEDIATE, start, end, expr)

    def is_token(self):
        return self.kind == OperandKind.TOKEN

    def is_reg(self):
        return self.kind == OperandKind.REGISTER

    def is_imm(self):
        return self.kind == OperandKind.IMMEDIATE

    def is_imm_in_range(self, lo, hi):
        if not self.is_imm():
            return False
        value = evaluate_as_constant(self.value)
        return value is not None and lo <= value <= hi

    def get_token(self):
        assert self.is_token(), "not a token"
        return self.value

    def get_reg(self):
        assert self.is_reg(), "invalid type access"
        return self.value

    def get_imm(self):
        assert self.is_imm(), "invalid type access"
        return self.value

    def add_to(self, inst):
        """append the MCOperand for this operand; tokens carry no encoding."""
        if self.is_reg():
            inst.add_operand(MCOperand.create_reg(self.value))
        elif self.is_imm():
            value = evaluate_as_constant(self.value)
            if value is not None:
                inst.add_operand(MCOperand.create_imm(value))
            else:
                inst.add_operand(MCOperand.create_expr(self.value))

    def __eq__(self, other):
        return (isinstance(other, Operand) and self.kind == other.kind
                and self.value == other.value)

    def __repr__(self):
        if self.is_reg():
            return f"Reg: {register_name(self.value)}"
        if self.is_imm():
            return f"Imm: {self.value}"
        return f"Token: {self.value}"


class ParseStatus:
    """
    Result of a micro-parser. Hard failures are not a status: they raise an
    AsmError, which abandons the statement.
    """
    SUCCESS = "success"
    NO_MATCH = "no_match"

# --------------------------------------------------
# Matcher results
# --------------------------------------------------
class MatchResult:
    SUCCESS = "success"
    MISSING_FEATURE = "missing_feature"
    MNEMONIC_FAIL = "mnemonic_fail"
    INVALID_OPERAND = MatchDiag.INVALID_OPERAND
    INVALID_BITFIELD_WIDTH = MatchDiag.INVALID_BITFIELD_WIDTH
    INVALID_BITFIELD_OFFSET = MatchDiag.INVALID_BITFIELD_OFFSET
    INVALID_PIXEL_ROTATION_SIZE = MatchDiag.INVALID_PIXEL_ROTATION_SIZE

class MatchOutcome:
    def __init__(self, result, entry=None, inst=None, error_index=None,
                 missing_features=frozenset()):
        self.result = result
        self.entry = entry
        self.inst = inst
        self.error_index = error_index     # index into the operand list
        self.missing_features = missing_features

    def __repr__(self):
        return f"MatchOutcome({self.result}, index={self.error_index})"


def edit_distance(a, b):
    """
    Levenshtein distance between two strings.

    return: integer
    """
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        cur = [i]
        for j, cb in enumerate(b, 1):
            cur.append(min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + (ca != cb)))
        prev = cur
    return prev[-1]

# --------------------------------------------------
# M88kAsmParser
# --------------------------------------------------
class M88kAsmParser:
    def __init__(self, streamer, diagnostics=None, cpu=DEFAULT_CPU):
        self.streamer = streamer
        self.diag = diagnostics if diagnostics is not None else DiagnosticEngine()
        self.cpu = cpu
        self.available_features = compute_available_features(cpu)
        self._custom_parsers = {
            "bf_width": self.parse_bf_width,
            "bf_offset": self.parse_bf_offset,
            "pixel_rot": self.parse_pixel_rot,
            "condition_code": self.parse_condition_code,
            "pcrel16": lambda tokens, operands: self.parse_pcrel(tokens, operands, 18),
            "pcrel26": lambda tokens, operands: self.parse_pcrel(tokens, operands, 28),
        }

    def set_cpu(self, cpu):
        self.available_features = compute_available_features(cpu)
        self.cpu = cpu
        logger.info(f"CPU variant set to {cpu}")

    # --------------------------------------------------
    # Directives
    # --------------------------------------------------
    def parse_directive(self, directive, tokens):
        """
        handle target directives.

        return: True if handled, False to let the default directive path run
        """
        if directive.text == ".requires_88110":
            if tokens.is_not(TokenKind.END_OF_STATEMENT):
                raise AsmSyntaxError("unexpected token in '.requires_88110' directive",
                                     tokens.get_loc())
            self.set_cpu("mc88110")
            self.streamer.emit_directive_requires_88110()
            return True
        return False

    # --------------------------------------------------
    # Statement grammar
    # --------------------------------------------------
    def parse_instruction(self, name, name_loc, tokens):
        """
        parse the operands following a mnemonic.

        return: operand list, first entry is the mnemonic token
        """
        operands = [Operand.create_token(name, name_loc)]

        if tokens.is_not(TokenKind.END_OF_STATEMENT):
            if not self.parse_operand(tokens, operands, name):
                raise AsmSyntaxError("expected operand", tokens.get_loc())

            if tokens.is_kind(TokenKind.COMMA):
                tokens.lex()
                if not self.parse_operand(tokens, operands, name):
                    raise AsmSyntaxError("expected operand", tokens.get_loc())

                # third operand, or a scaled register
                if tokens.is_kind(TokenKind.COMMA):
                    tokens.lex()
                    if tokens.is_kind(TokenKind.LESS) and name == "rot":
                        operands.append(Operand.create_token("<", tokens.get_loc()))

                    if not self.parse_operand(tokens, operands, name):
                        raise AsmSyntaxError("expected register or immediate", tokens.get_loc())
                    # bitfield offset
                    if tokens.is_kind(TokenKind.LESS):
                        operands.append(Operand.create_token("<", tokens.get_loc()))
                        if not self.parse_operand(tokens, operands, name):
                            raise AsmSyntaxError("expected bitfield offset", tokens.get_loc())
                elif tokens.is_kind(TokenKind.LBRAC):
                    if not self.parse_scaled_register(tokens, operands):
                        raise AsmSyntaxError("expected scaled register operand", tokens.get_loc())

            if tokens.is_not(TokenKind.END_OF_STATEMENT):
                raise AsmSyntaxError("unexpected token in argument list", tokens.get_loc())

        logger.debug(f"parsed {name}: {operands[1:]}")
        return operands

    def parse_operand(self, tokens, operands, mnemonic):
        """
        parse one operand into the list.

        return: True on success, False if nothing operand-like was found
        """
        status = self.match_operand_parser_impl(tokens, operands, mnemonic)
        if status == ParseStatus.SUCCESS:
            return True

        if tokens.is_kind(TokenKind.PERCENT):
            status, reg, start, end = self.try_parse_register(tokens)
            if status == ParseStatus.NO_MATCH:
                raise UnknownRegister("invalid register", tokens.get_loc())
            operands.append(Operand.create_reg(reg, start, end))
            return True

        # immediate or address
        if can_start_expression(tokens):
            start = tokens.get_loc()
            expr = parse_expression(tokens)
            operands.append(Operand.create_imm(expr, start, tokens.last_loc()))
            return True

        return False

    def match_operand_parser_impl(self, tokens, operands, mnemonic):
        """
        offer the tokens to the custom parsers of the operand classes that
        candidate encodings expect at the current slot.

        return: ParseStatus
        """
        slot = len(operands) - 1
        tried = []
        for entry in candidates_for(mnemonic):
            if slot >= len(entry.operand_classes):
                continue
            key = entry.operand_classes[slot].parser
            if key is None or key in tried:
                continue
            tried.append(key)
            status = self._custom_parsers[key](tokens, operands)
            if status != ParseStatus.NO_MATCH:
                return status
        return ParseStatus.NO_MATCH

    # --------------------------------------------------
    # Micro-parsers
    # --------------------------------------------------
    def parse_bf_width(self, tokens, operands):
        # Width of a bitfield. An empty width followed by <O> is 0. A lone
        # integer not followed by <O> is the offset, and the width is 0.
        start = tokens.get_loc()
        has_width = False
        width = 0
        if tokens.is_kind(TokenKind.INTEGER):
            width = tokens.lex().int_val
            has_width = True
        is_really_offset = False
        if tokens.is_not(TokenKind.LESS):
            if not has_width:
                return ParseStatus.NO_MATCH
            is_really_offset = True

        # an empty width ends where it starts
        end = tokens.last_loc() if has_width else start
        if is_really_offset:
            loc = tokens.get_loc()
            operands.append(Operand.create_imm(ConstantExpr(0), start, end))
            operands.append(Operand.create_token("<", loc))
            operands.append(Operand.create_imm(ConstantExpr(width), start, end))
            operands.append(Operand.create_token(">", loc))
        else:
            operands.append(Operand.create_imm(ConstantExpr(width), start, end))
        return ParseStatus.SUCCESS

    def parse_bf_offset(self, tokens, operands):
        # <7>
        start = tokens.get_loc()
        if tokens.is_not(TokenKind.LESS):
            return ParseStatus.NO_MATCH
        tokens.lex()
        if tokens.is_not(TokenKind.INTEGER):
            raise AsmSyntaxError("expected bitfield offset", tokens.get_loc())
        offset = tokens.lex().int_val
        if tokens.is_not(TokenKind.GREATER):
            raise AsmSyntaxError("expected '>' after bitfield offset", tokens.get_loc())
        greater = tokens.lex()

        operands.append(Operand.create_imm(ConstantExpr(offset), start, greater.loc))
        operands.append(Operand.create_token(">", greater.loc))
        return ParseStatus.SUCCESS

    def parse_pixel_rot(self, tokens, operands):
        start = tokens.get_loc()
        if tokens.is_not(TokenKind.LESS):
            return ParseStatus.NO_MATCH
        tokens.lex()
        if tokens.is_not(TokenKind.INTEGER):
            raise AsmSyntaxError("expected pixel rotation size", tokens.get_loc())
        rotate_size = tokens.lex().int_val
        if tokens.is_not(TokenKind.GREATER):
            raise AsmSyntaxError("expected '>' after pixel rotation size", tokens.get_loc())
        greater = tokens.lex()

        if rotate_size & 0x3:
            self.diag.warning("removed lower 2 bits of expression", start)
            rotate_size &= ~0x3
        operands.append(Operand.create_imm(ConstantExpr(rotate_size), start, greater.loc))
        return ParseStatus.SUCCESS

    def parse_condition_code(self, tokens, operands):
        # symbolic condition for bcnd/tcnd; small literals take the generic path
        start = tokens.get_loc()
        tok = tokens.tok
        if tok.is_kind(TokenKind.INTEGER):
            if 0 <= tok.int_val <= 31:
                return ParseStatus.NO_MATCH
            code = tok.int_val & 0xFFFFFFFF
        else:
            code = CONDITION_CODES.get(tok.text)
            if code is None:
                return ParseStatus.NO_MATCH
        tokens.lex()

        operands.append(Operand.create_imm(ConstantExpr(code), start, start))
        return ParseStatus.SUCCESS

    def parse_pcrel(self, tokens, operands, bits):
        start = tokens.get_loc()
        expr = parse_expression(tokens)
        if expr is None:
            return ParseStatus.NO_MATCH

        min_val = -(1 << bits)
        max_val = (1 << bits) - 1

        def is_out_of_range_constant(e):
            value = evaluate_as_constant(e)
            if value is None:
                return False
            return bool(value & 1) or value < min_val or value > max_val

        # A bare constant is an absolute displacement: check only the range.
        if isinstance(expr, ConstantExpr) and is_out_of_range_constant(expr):
            raise RangeError("offset out of range", start)

        # The constant part of sym+const must be in range by itself; the symbol
        # is left to the linker.
        if isinstance(expr, BinaryExpr):
            if is_out_of_range_constant(expr.lhs) or is_out_of_range_constant(expr.rhs):
                raise RangeError("offset out of range", start)

        operands.append(Operand.create_imm(expr, start, tokens.last_loc()))
        return ParseStatus.SUCCESS

    # --------------------------------------------------
    # Registers
    # --------------------------------------------------
    def match_register(self, name):
        """
        resolve a register name, primary spelling first.

        return: register id or NO_REGISTER
        """
        reg = match_register_name(name)
        if reg == NO_REGISTER:
            reg = match_register_alt_name(name)
        return reg

    def parse_register(self, tokens, restore_on_failure=False):
        """
        parse %name.

        return: (register, start, end); None when restore_on_failure is set
                and the name does not resolve (the '%' is pushed back)
        """
        start = tokens.get_loc()
        if tokens.is_not(TokenKind.PERCENT):
            if restore_on_failure:
                return None
            raise AsmSyntaxError("expected register", start)
        percent = tokens.lex()

        reg = NO_REGISTER
        if tokens.is_kind(TokenKind.IDENTIFIER):
            reg = self.match_register(tokens.tok.text)
        if reg == NO_REGISTER:
            if restore_on_failure:
                tokens.unlex(percent)
                return None
            raise UnknownRegister("invalid register", start)

        end = tokens.lex().loc
        return reg, start, end

    def try_parse_register(self, tokens):
        """
        speculative register parse, used by parse_operand and by callers that
        must try a register before another operand form.

        return: (ParseStatus, register, start, end); tokens are untouched on NO_MATCH
        """
        parsed = self.parse_register(tokens, restore_on_failure=True)
        if parsed is None:
            return ParseStatus.NO_MATCH, NO_REGISTER, None, None
        return (ParseStatus.SUCCESS,) + parsed

    def parse_scaled_register(self, tokens, operands):
        lbrac_loc = tokens.get_loc()
        if tokens.is_not(TokenKind.LBRAC):
            return False
        tokens.lex()

        reg, start, end = self.parse_register(tokens)

        if tokens.is_not(TokenKind.RBRAC):
            return False
        rbrac = tokens.lex()

        operands.append(Operand.create_token("[", lbrac_loc))
        operands.append(Operand.create_reg(reg, start, end))
        operands.append(Operand.create_token("]", rbrac.loc))
        return True

    # --------------------------------------------------
    # Matcher
    # --------------------------------------------------
    def validate_target_operand_class(self, op, op_class):
        """
        extra check for classes the plain predicate cannot decide.

        return: True if the operand is acceptable for the class
        """
        if op_class is GPR64 and op.is_reg():
            # any GPR names a pair by its high half.
            # TODO: add an option to flag odd registers used as pairs.
            return register_class(op.get_reg()) == RegClass.GPR
        return False

    def operand_matches(self, op, op_class):
        if op_class.accepts(op):
            return True
        return op_class.validate and self.validate_target_operand_class(op, op_class)

    def match_instruction(self, operands):
        """
        select the first candidate, in declaration order, that accepts every
        operand and whose features are available.

        return: MatchOutcome
        """
        mnemonic = operands[0].get_token()
        candidates = candidates_for(mnemonic)
        if not candidates:
            return MatchOutcome(MatchResult.MNEMONIC_FAIL)

        actual = operands[1:]
        error_index = None
        error_result = MatchResult.INVALID_OPERAND
        missing = None
        for entry in candidates:
            failed = None
            for i, op_class in enumerate(entry.operand_classes):
                if i >= len(actual):
                    failed = (i + 1, MatchResult.INVALID_OPERAND)
                    break
                if not self.operand_matches(actual[i], op_class):
                    failed = (i + 1, op_class.diag)
                    break
            else:
                if len(actual) > len(entry.operand_classes):
                    failed = (len(entry.operand_classes) + 1, MatchResult.INVALID_OPERAND)

            if failed is None:
                if entry.features <= self.available_features:
                    inst = MCInst(entry.opcode)
                    for op in actual:
                        op.add_to(inst)
                    return MatchOutcome(MatchResult.SUCCESS, entry=entry, inst=inst)
                if missing is None:
                    missing = entry.features - self.available_features
                continue

            # keep the furthest failing operand; a class-specific
            # diagnostic beats the generic one at the same position
            index, result = failed
            if error_index is None or index > error_index:
                error_index, error_result = index, result
            elif (index == error_index and result != MatchResult.INVALID_OPERAND
                    and error_result == MatchResult.INVALID_OPERAND):
                error_result = result

        if missing is not None:
            return MatchOutcome(MatchResult.MISSING_FEATURE, missing_features=missing)
        return MatchOutcome(error_result, error_index=error_index)

    def mnemonic_spell_check(self, mnemonic):
        """
        nearest mnemonics available under the active features.

        return: sorted list of mnemonics at the smallest edit distance
        """
        best = None
        suggestions = []
        for candidate in MNEMONICS:
            if not any(e.features <= self.available_features for e in candidates_for(candidate)):
                continue
            dist = edit_distance(mnemonic, candidate)
            if dist > MAX_EDIT_DISTANCE:
                continue
            if best is None or dist < best:
                best = dist
                suggestions = [candidate]
            elif dist == best:
                suggestions.append(candidate)
        return sorted(suggestions)

    def match_and_emit_instruction(self, operands, id_loc):
        """
        match the operand list and emit the instruction.

        return: the emitted MCInst
        """
        outcome = self.match_instruction(operands)
        result = outcome.result

        if result == MatchResult.SUCCESS:
            inst = outcome.inst
            inst.loc = id_loc
            self.streamer.emit_instruction(inst)
            return inst

        if result == MatchResult.MISSING_FEATURE:
            if not outcome.missing_features:
                raise InternalInvariant("unknown missing features")
            names = [f for f in FEATURE_NAMES if f in outcome.missing_features]
            raise MissingFeature("instruction requires the following: " + ", ".join(names),
                                 id_loc, names)

        if result == MatchResult.MNEMONIC_FAIL:
            suggestions = self.mnemonic_spell_check(operands[0].get_token())
            message = "invalid instruction"
            if len(suggestions) == 1:
                message += f", did you mean: {suggestions[0]}?"
            elif suggestions:
                message += f", did you mean one of: {', '.join(suggestions)}?"
            raise UnknownMnemonic(message, id_loc, suggestions)

        index = outcome.error_index
        if result == MatchResult.INVALID_OPERAND:
            loc = id_loc
            if index is not None:
                if index >= len(operands):
                    raise InvalidOperandClass("too few operands for instruction", id_loc,
                                              index, result)
                loc = operands[index].start
            raise InvalidOperandClass("invalid operand for instruction", loc, index, result)

        if result in MATCH_DIAG_MESSAGES:
            if index is None or index >= len(operands):
                raise InvalidOperandClass("too few operands for instruction", id_loc,
                                          index, result)
            raise InvalidOperandClass(MATCH_DIAG_MESSAGES[result], operands[index].start,
                                      index, result)

        raise InternalInvariant(f"unexpected match result {result!r}")
