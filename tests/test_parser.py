import pytest

from m88k_errors import AsmSyntaxError, RangeError, UnknownRegister
from m88k_isa import NO_REGISTER, gpr, match_register_name
from m88k_lexer import SourceLoc, TokenKind
from m88k_mc import BinaryExpr, ConstantExpr, SymbolRefExpr
from m88k_parser import CONDITION_CODES, Operand, OperandKind, ParseStatus

from conftest import parse_statement, tokens_for


# --------------------------------------------------
# Registers
# --------------------------------------------------
@pytest.mark.parametrize("primary, alternate", [
    ("r0", "zero"),
    ("r1", "rp"),
    ("r30", "fp"),
    ("r31", "sp"),
    ("cr0", "pid"),
    ("cr7", "vbr"),
    ("fcr0", "fpecr"),
    ("fcr62", "fpsr"),
    ("fcr63", "fpcr"),
])
def test_alternate_register_names(parser, primary, alternate):
    reg_a, _, _ = parser.parse_register(tokens_for(f"%{primary}"))
    reg_b, _, _ = parser.parse_register(tokens_for(f"%{alternate}"))
    assert reg_a != NO_REGISTER
    assert reg_a == reg_b


def test_register_names_are_case_insensitive(parser):
    reg, _, _ = parser.parse_register(tokens_for("%R31"))
    assert reg == gpr(31)


def test_register_pairs_have_no_spelling():
    assert match_register_name("r2_r3") == NO_REGISTER


def test_register_locations(parser):
    reg, start, end = parser.parse_register(tokens_for("%r5"))
    assert reg == gpr(5)
    assert start == SourceLoc(1, 1)
    assert end == SourceLoc(1, 2)


@pytest.mark.parametrize("text", ["%r32", "%foo", "%5"])
def test_invalid_register(parser, text):
    with pytest.raises(UnknownRegister) as excinfo:
        parser.parse_register(tokens_for(text))
    assert excinfo.value.message == "invalid register"
    assert excinfo.value.loc == SourceLoc(1, 1)


def test_missing_percent(parser):
    with pytest.raises(AsmSyntaxError) as excinfo:
        parser.parse_register(tokens_for("r1"))
    assert excinfo.value.message == "expected register"


def test_try_parse_register_restores_percent(parser):
    tokens = tokens_for("%foo")
    status, reg, start, end = parser.try_parse_register(tokens)
    assert status == ParseStatus.NO_MATCH
    assert reg == NO_REGISTER
    assert tokens.is_kind(TokenKind.PERCENT)
    assert tokens.peek(1).text == "foo"


def test_try_parse_register_success(parser):
    status, reg, _, _ = parser.try_parse_register(tokens_for("%sp"))
    assert status == ParseStatus.SUCCESS
    assert reg == gpr(31)


@pytest.mark.parametrize("text, col", [("add %r1, %bogus, %r3", 10), ("jmp %", 5)])
def test_unresolved_register_operand(parser, text, col):
    with pytest.raises(UnknownRegister) as excinfo:
        parse_statement(parser, text)
    assert excinfo.value.message == "invalid register"
    assert excinfo.value.loc == SourceLoc(1, col)

# --------------------------------------------------
# Operand list shape
# --------------------------------------------------
def test_operand_list_starts_with_mnemonic(parser):
    operands = parse_statement(parser, "add %r3, %r4, 100")
    assert operands[0] == Operand(OperandKind.TOKEN, None, None, "add")
    assert [op.kind for op in operands[1:]] == [
        OperandKind.REGISTER, OperandKind.REGISTER, OperandKind.IMMEDIATE]
    assert operands[3].get_imm() == ConstantExpr(100)
    assert operands[3].start == SourceLoc(1, 15)


def test_no_operands(parser):
    operands = parse_statement(parser, "rte")
    assert len(operands) == 1


def test_scaled_register(parser):
    operands = parse_statement(parser, "ld %r1, %r2[%r3]")
    assert [op.kind for op in operands[1:]] == [
        OperandKind.REGISTER, OperandKind.REGISTER, OperandKind.TOKEN,
        OperandKind.REGISTER, OperandKind.TOKEN]
    assert operands[3].get_token() == "["
    assert operands[4].get_reg() == gpr(3)
    assert operands[5].get_token() == "]"


def test_symbolic_immediate(parser):
    operands = parse_statement(parser, "or %r2, %r2, lo16(table+4)")
    assert operands[3].is_imm()
    assert operands[3].is_imm_in_range(0, 0xFFFF) is False


@pytest.mark.parametrize("text, message", [
    ("add %r1 %r2", "unexpected token in argument list"),
    ("add %r1, ,", "expected operand"),
    ("add ,", "expected operand"),
    ("add %r1, %r2, ]", "expected register or immediate"),
    ("ld %r1, %r2[%r3", "expected scaled register operand"),
    ("ext %r1, %r2, 5<x>", "expected bitfield offset"),
    ("add %r1, %r2, %r3, %r4", "unexpected token in argument list"),
])
def test_syntax_errors(parser, text, message):
    with pytest.raises(AsmSyntaxError) as excinfo:
        parse_statement(parser, text)
    assert excinfo.value.message == message

# --------------------------------------------------
# Bitfields
# --------------------------------------------------
@pytest.mark.parametrize("n", range(32))
def test_bare_bitfield_offset_means_zero_width(parser, n):
    for mnemonic in ("ext", "clr", "mak"):
        bare = parse_statement(parser, f"{mnemonic} %r1, %r2, {n}")
        explicit = parse_statement(parser, f"{mnemonic} %r1, %r2, 0<{n}>")
        empty_width = parse_statement(parser, f"{mnemonic} %r1, %r2, <{n}>")
        assert bare == explicit
        assert empty_width == explicit


def test_empty_width_span_is_not_inverted(parser):
    operands = parse_statement(parser, "ext %r1, %r2, <5>")
    width = operands[3]
    assert width.get_imm() == ConstantExpr(0)
    assert width.start == SourceLoc(1, 15)
    assert width.end == width.start


def test_explicit_width_span(parser):
    operands = parse_statement(parser, "ext %r1, %r2, 12<5>")
    assert operands[3].start == SourceLoc(1, 15)
    assert operands[3].end == SourceLoc(1, 15)


def test_width_and_offset(parser):
    operands = parse_statement(parser, "extu %r1, %r2, 5<3>")
    assert operands[3].get_imm() == ConstantExpr(5)
    assert operands[4].get_token() == "<"
    assert operands[5].get_imm() == ConstantExpr(3)
    assert operands[6].get_token() == ">"
    assert len(operands) == 7


def test_bitfield_register_form_skips_width_parser(parser):
    operands = parse_statement(parser, "ext %r1, %r2, %r3")
    assert operands[3].get_reg() == gpr(3)


def test_rotate_offset(parser):
    operands = parse_statement(parser, "rot %r1, %r2, <5>")
    assert [op.kind for op in operands[3:]] == [
        OperandKind.TOKEN, OperandKind.IMMEDIATE, OperandKind.TOKEN]
    assert operands[4].get_imm() == ConstantExpr(5)

# --------------------------------------------------
# Pixel rotation
# --------------------------------------------------
@pytest.mark.parametrize("r", range(64))
def test_pixel_rotation_truncates_low_bits(parser_88110, r):
    operands = parse_statement(parser_88110, f"prot %r2, %r4, <{r}>")
    assert operands[3].get_imm() == ConstantExpr(r - r % 4)
    warnings = parser_88110.diag.warnings
    if r % 4:
        assert len(warnings) == 1
        assert warnings[0].message == "removed lower 2 bits of expression"
        assert warnings[0].loc == SourceLoc(1, 16)
    else:
        assert warnings == []


def test_pixel_rotation_register_form(parser_88110):
    operands = parse_statement(parser_88110, "prot %r2, %r4, %r6")
    assert operands[3].get_reg() == gpr(6)

# --------------------------------------------------
# Condition codes
# --------------------------------------------------
@pytest.mark.parametrize("name, code", sorted(CONDITION_CODES.items()))
def test_symbolic_condition_codes(parser, name, code):
    operands = parse_statement(parser, f"bcnd {name}, %r2, target")
    assert operands[1].get_imm() == ConstantExpr(code)
    assert operands[3].get_imm() == SymbolRefExpr("target")


def test_condition_code_values():
    assert CONDITION_CODES == {"eq0": 0x2, "ne0": 0xD, "gt0": 0x1,
                               "lt0": 0xC, "ge0": 0x3, "le0": 0xE}


def test_numeric_condition_code(parser):
    operands = parse_statement(parser, "bcnd 2, %r2, target")
    assert operands[1].get_imm() == ConstantExpr(2)


def test_large_numeric_condition_code_is_kept(parser):
    operands = parse_statement(parser, "tcnd 40, %r2, 3")
    assert operands[1].get_imm() == ConstantExpr(40)


def test_unknown_condition_name_is_a_symbol(parser):
    operands = parse_statement(parser, "bcnd always, %r2, target")
    assert operands[1].get_imm() == SymbolRefExpr("always")

# --------------------------------------------------
# PC-relative displacements
# --------------------------------------------------
@pytest.mark.parametrize("disp", [0, 2, -2, 1024, (1 << 18) - 2, -(1 << 18)])
def test_pcrel16_accepts(parser, disp):
    operands = parse_statement(parser, f"bcnd eq0, %r2, {disp}")
    assert operands[3].get_imm() == ConstantExpr(disp)


@pytest.mark.parametrize("disp", [1, 3, -1, (1 << 18) - 1, 1 << 18, -(1 << 18) - 2])
def test_pcrel16_rejects(parser, disp):
    with pytest.raises(RangeError) as excinfo:
        parse_statement(parser, f"bcnd eq0, %r2, {disp}")
    assert excinfo.value.message == "offset out of range"
    assert excinfo.value.loc == SourceLoc(1, 16)


def test_pcrel16_symbol_plus_offset(parser):
    operands = parse_statement(parser, "bb1 5, %r3, loop+8")
    assert operands[3].get_imm() == BinaryExpr("+", SymbolRefExpr("loop"), ConstantExpr(8))
    with pytest.raises(RangeError):
        parse_statement(parser, f"bb1 5, %r3, loop+{1 << 18}")
    with pytest.raises(RangeError):
        parse_statement(parser, "bb1 5, %r3, loop+3")


@pytest.mark.parametrize("disp, ok", [
    (0x0FFFFFFE, True),
    (-0x10000000, True),
    (0x10000000, False),
    (0x0FFFFFFF, False),
])
def test_pcrel26_range(parser, disp, ok):
    if ok:
        operands = parse_statement(parser, f"br {disp}")
        assert operands[1].get_imm() == ConstantExpr(disp)
    else:
        with pytest.raises(RangeError):
            parse_statement(parser, f"br {disp}")


def test_pcrel_symbol_only(parser):
    operands = parse_statement(parser, "bsr.n printf")
    assert operands[1].get_imm() == SymbolRefExpr("printf")
