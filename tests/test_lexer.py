import pytest

from m88k_errors import AsmSyntaxError, LexicalError
from m88k_lexer import (SourceLoc, TokenKind, TokenSource, parse_expression,
                        parse_int_literal, tokenize_line)
from m88k_mc import BinaryExpr, ConstantExpr, SymbolRefExpr, TargetExpr, VariantKind

from conftest import tokens_for


# --------------------------------------------------
# tokenize_line
# --------------------------------------------------
def test_tokenize_instruction_line():
    tokens = tokenize_line("add %r3, %r4, 100", 7)
    kinds = [t.kind for t in tokens]
    assert kinds == [
        TokenKind.IDENTIFIER, TokenKind.PERCENT, TokenKind.IDENTIFIER, TokenKind.COMMA,
        TokenKind.PERCENT, TokenKind.IDENTIFIER, TokenKind.COMMA, TokenKind.INTEGER,
        TokenKind.END_OF_STATEMENT,
    ]
    assert tokens[7].int_val == 100
    assert tokens[7].loc == SourceLoc(7, 15)
    assert tokens[0].loc == SourceLoc(7, 1)


def test_mnemonic_with_suffix_is_one_identifier():
    tokens = tokenize_line("ld.bu %r1, %r2, 0", 1)
    assert tokens[0].kind == TokenKind.IDENTIFIER
    assert tokens[0].text == "ld.bu"


@pytest.mark.parametrize("text, value", [
    ("0", 0),
    ("42", 42),
    ("0x1F", 31),
    ("0XfF", 255),
    ("0b101", 5),
    ("0o17", 15),
])
def test_parse_int_literal(text, value):
    assert parse_int_literal(text) == value
    assert tokenize_line(text, 1)[0].int_val == value


@pytest.mark.parametrize("text", ["rte ; trailing comment", "rte | bar comment"])
def test_comment_is_dropped(text):
    kinds = [t.kind for t in tokenize_line(text, 1)]
    assert kinds == [TokenKind.IDENTIFIER, TokenKind.END_OF_STATEMENT]


def test_empty_line_is_end_of_statement():
    tokens = tokenize_line("", 3)
    assert len(tokens) == 1
    assert tokens[0].kind == TokenKind.END_OF_STATEMENT


def test_invalid_character():
    with pytest.raises(LexicalError) as excinfo:
        tokenize_line("add @", 2)
    assert excinfo.value.loc == SourceLoc(2, 5)


def test_integer_followed_by_identifier_character():
    with pytest.raises(LexicalError):
        tokenize_line("or %r1, %r2, 0x1G", 1)

# --------------------------------------------------
# TokenSource
# --------------------------------------------------
def test_lex_never_passes_end_of_statement():
    tokens = tokens_for("rte")
    assert tokens.lex().text == "rte"
    eos = tokens.lex()
    assert eos.kind == TokenKind.END_OF_STATEMENT
    assert tokens.lex() is eos


def test_unlex_and_save_restore():
    tokens = tokens_for("%r1, %r2")
    mark = tokens.save()
    percent = tokens.lex()
    assert tokens.is_kind(TokenKind.IDENTIFIER)
    tokens.unlex(percent)
    assert tokens.is_kind(TokenKind.PERCENT)
    tokens.lex()
    tokens.lex()
    assert tokens.is_kind(TokenKind.COMMA)
    tokens.restore(mark)
    assert tokens.is_kind(TokenKind.PERCENT)


def test_peek_is_bounded():
    tokens = tokens_for("a:")
    assert tokens.peek(1).kind == TokenKind.COLON
    assert tokens.peek(10).kind == TokenKind.END_OF_STATEMENT


def test_token_source_appends_end_of_statement():
    tokens = TokenSource([])
    assert tokens.is_kind(TokenKind.END_OF_STATEMENT)


def test_eat_to_end_of_statement():
    tokens = tokens_for("add %r1, %r2, %r3")
    tokens.eat_to_end_of_statement()
    assert tokens.is_kind(TokenKind.END_OF_STATEMENT)

# --------------------------------------------------
# parse_expression
# --------------------------------------------------
def test_constant_expression_folds():
    assert parse_expression(tokens_for("2+3")) == ConstantExpr(5)
    assert parse_expression(tokens_for("(1+2)-4")) == ConstantExpr(-1)
    assert parse_expression(tokens_for("-8")) == ConstantExpr(-8)


def test_symbol_plus_offset():
    expr = parse_expression(tokens_for("target+8"))
    assert expr == BinaryExpr("+", SymbolRefExpr("target"), ConstantExpr(8))


def test_symbol_minus_offset_is_negative_add():
    expr = parse_expression(tokens_for("target-4"))
    assert expr == BinaryExpr("+", SymbolRefExpr("target"), ConstantExpr(-4))
    assert str(expr) == "target-4"


def test_relocation_functions():
    hi = parse_expression(tokens_for("hi16(buffer)"))
    lo = parse_expression(tokens_for("lo16(buffer+4)"))
    assert hi == TargetExpr(VariantKind.VK_ABS_HI, SymbolRefExpr("buffer"))
    assert lo == TargetExpr(VariantKind.VK_ABS_LO,
                            BinaryExpr("+", SymbolRefExpr("buffer"), ConstantExpr(4)))
    assert str(hi) == "hi16(buffer)"


def test_hi16_without_parenthesis_is_a_symbol():
    assert parse_expression(tokens_for("hi16")) == SymbolRefExpr("hi16")


def test_expression_does_not_consume_register():
    tokens = tokens_for("%r1")
    assert parse_expression(tokens) is None
    assert tokens.is_kind(TokenKind.PERCENT)


def test_symbol_difference_is_rejected():
    with pytest.raises(AsmSyntaxError):
        parse_expression(tokens_for("a - b"))


def test_unbalanced_parenthesis():
    with pytest.raises(AsmSyntaxError):
        parse_expression(tokens_for("(1+2"))
