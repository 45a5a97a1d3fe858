#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Line tokenizer, token source and expression parser for m88kasm.

A statement is one source line. tokenize_line() always terminates the token
list with an END_OF_STATEMENT token, so parsers never have to check for the
end of the list.
"""

import re

from m88k_errors import LexicalError, AsmSyntaxError
from m88k_mc import (ConstantExpr, SymbolRefExpr, TargetExpr, VariantKind,
                     create_add)

# --------------------------------------------------
# Source locations and tokens
# --------------------------------------------------
class SourceLoc:
    def __init__(self, line, col):
        self.line = line
        self.col = col

    def __eq__(self, other):
        return (isinstance(other, SourceLoc)
                and self.line == other.line and self.col == other.col)

    def __hash__(self):
        return hash((self.line, self.col))

    def __repr__(self):
        return f"SourceLoc({self.line}, {self.col})"

    def __str__(self):
        return f"{self.line}:{self.col}"


class TokenKind:
    IDENTIFIER = "identifier"
    INTEGER = "integer"
    PERCENT = "%"
    COMMA = ","
    LESS = "<"
    GREATER = ">"
    LBRAC = "["
    RBRAC = "]"
    LPAREN = "("
    RPAREN = ")"
    PLUS = "+"
    MINUS = "-"
    COLON = ":"
    END_OF_STATEMENT = "end of statement"


class Token:
    def __init__(self, kind, text, loc, int_val=None):
        self.kind = kind
        self.text = text
        self.loc = loc
        self.int_val = int_val

    def is_kind(self, kind):
        return self.kind == kind

    def __repr__(self):
        return f"Token({self.kind!r}, {self.text!r}, {self.loc})"

# --------------------------------------------------
# tokenize_line
# --------------------------------------------------
_TOKEN_RE = re.compile(r"""
    (?P<ws>[ \t\r\n]+)
   |(?P<comment>[;|].*)
   |(?P<integer>0[xX][0-9a-fA-F]+|0[bB][01]+|0[oO][0-7]+|[0-9]+)
   |(?P<ident>[A-Za-z_.$][A-Za-z0-9_.$]*)
   |(?P<punct>[%,<>\[\]()+\-:])
""", re.VERBOSE)

_IDENT_CHAR_RE = re.compile(r"[A-Za-z0-9_.$]")

def parse_int_literal(text):
    """
    parse a decimal, 0x, 0b or 0o literal.

    return: integer
    """
    lower = text.lower()
    if lower.startswith("0x"):
        return int(text[2:], 16)
    if lower.startswith("0b"):
        return int(text[2:], 2)
    if lower.startswith("0o"):
        return int(text[2:], 8)
    return int(text, 10)

def tokenize_line(text, lineno):
    """
    split one source line into tokens.

    return: list of Token, last one is END_OF_STATEMENT
    """
    tokens = []
    pos = 0
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if m is None:
            raise LexicalError(f"invalid character '{text[pos]}'",
                               SourceLoc(lineno, pos + 1))
        kind = m.lastgroup
        lexeme = m.group(kind)
        loc = SourceLoc(lineno, pos + 1)
        if kind == "comment":
            break
        if kind == "integer":
            end = m.end()
            if end < len(text) and _IDENT_CHAR_RE.match(text[end]):
                raise LexicalError(f"invalid integer literal '{lexeme}{text[end]}'", loc)
            tokens.append(Token(TokenKind.INTEGER, lexeme, loc, parse_int_literal(lexeme)))
        elif kind == "ident":
            tokens.append(Token(TokenKind.IDENTIFIER, lexeme, loc))
        elif kind == "punct":
            tokens.append(Token(lexeme, lexeme, loc))
        pos = m.end()
    tokens.append(Token(TokenKind.END_OF_STATEMENT, "", SourceLoc(lineno, len(text) + 1)))
    return tokens

# --------------------------------------------------
# TokenSource
# --------------------------------------------------
class TokenSource:
    """
    Cursor over the tokens of one statement.

    Supports one-token peeking, arbitrary bounded lookahead with save()/
    restore(), and pushing a consumed token back with unlex().
    """
    def __init__(self, tokens):
        self._tokens = list(tokens)
        if not self._tokens or not self._tokens[-1].is_kind(TokenKind.END_OF_STATEMENT):
            last = self._tokens[-1].loc if self._tokens else SourceLoc(0, 1)
            self._tokens.append(Token(TokenKind.END_OF_STATEMENT, "", last))
        self._pos = 0

    @property
    def tok(self):
        return self._tokens[self._pos]

    def peek(self, n=0):
        idx = min(self._pos + n, len(self._tokens) - 1)
        return self._tokens[idx]

    def is_kind(self, kind):
        return self.tok.kind == kind

    def is_not(self, kind):
        return self.tok.kind != kind

    def get_loc(self):
        return self.tok.loc

    def last_loc(self):
        """
        return: location of the most recently consumed token
        """
        if self._pos == 0:
            return self.tok.loc
        return self._tokens[self._pos - 1].loc

    def lex(self):
        """
        consume the current token; END_OF_STATEMENT is never passed.

        return: the consumed token
        """
        token = self.tok
        if not token.is_kind(TokenKind.END_OF_STATEMENT):
            self._pos += 1
        return token

    def unlex(self, token):
        if self._pos > 0 and self._tokens[self._pos - 1] is token:
            self._pos -= 1
        else:
            self._tokens.insert(self._pos, token)

    def save(self):
        return self._pos

    def restore(self, mark):
        self._pos = mark

    def eat_to_end_of_statement(self):
        while not self.is_kind(TokenKind.END_OF_STATEMENT):
            self._pos += 1

# --------------------------------------------------
# Expression parser
# --------------------------------------------------
_RELOC_FUNCS = {
    "hi16": VariantKind.VK_ABS_HI,
    "lo16": VariantKind.VK_ABS_LO,
}

_EXPR_START = (TokenKind.INTEGER, TokenKind.IDENTIFIER, TokenKind.MINUS,
               TokenKind.PLUS, TokenKind.LPAREN)

def can_start_expression(tokens):
    return tokens.tok.kind in _EXPR_START

def parse_expression(tokens):
    """
    parse `term (('+'|'-') term)*` from the token source.

    return: expression node, or None (nothing consumed) when the current
            token cannot begin an expression
    """
    if not can_start_expression(tokens):
        return None
    expr = _parse_term(tokens)
    while tokens.tok.kind in (TokenKind.PLUS, TokenKind.MINUS):
        op_tok = tokens.lex()
        rhs = _parse_term(tokens)
        if op_tok.is_kind(TokenKind.MINUS):
            if not isinstance(rhs, ConstantExpr):
                raise AsmSyntaxError("symbol difference is not supported in expressions",
                                     op_tok.loc)
            rhs = ConstantExpr(-rhs.value)
        expr = create_add(expr, rhs)
    return expr

def _parse_term(tokens):
    tok = tokens.tok
    if tok.is_kind(TokenKind.INTEGER):
        tokens.lex()
        return ConstantExpr(tok.int_val)
    if tok.is_kind(TokenKind.MINUS) or tok.is_kind(TokenKind.PLUS):
        tokens.lex()
        operand = _parse_term(tokens)
        if tok.is_kind(TokenKind.PLUS):
            return operand
        if not isinstance(operand, ConstantExpr):
            raise AsmSyntaxError("cannot negate a symbolic expression", tok.loc)
        return ConstantExpr(-operand.value)
    if tok.is_kind(TokenKind.LPAREN):
        tokens.lex()
        expr = parse_expression(tokens)
        if expr is None:
            raise AsmSyntaxError("unknown token in expression", tokens.get_loc())
        if tokens.is_not(TokenKind.RPAREN):
            raise AsmSyntaxError("expected ')' in parentheses expression", tokens.get_loc())
        tokens.lex()
        return expr
    if tok.is_kind(TokenKind.IDENTIFIER):
        tokens.lex()
        variant = _RELOC_FUNCS.get(tok.text)
        if variant is not None and tokens.is_kind(TokenKind.LPAREN):
            tokens.lex()
            inner = parse_expression(tokens)
            if inner is None or tokens.is_not(TokenKind.RPAREN):
                raise AsmSyntaxError(f"expected expression in {tok.text}()", tokens.get_loc())
            tokens.lex()
            return TargetExpr(variant, inner)
        return SymbolRefExpr(tok.text)
    raise AsmSyntaxError("unknown token in expression", tok.loc)
