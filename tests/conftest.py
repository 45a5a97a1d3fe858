"""
Shared fixtures for the m88kasm test suite.
"""

import pytest

from m88k_errors import DiagnosticEngine
from m88k_lexer import TokenSource, tokenize_line
from m88k_parser import M88kAsmParser
from m88k_streamer import ObjectStreamer
from m88kasm import Assembler


@pytest.fixture
def streamer():
    return ObjectStreamer()


@pytest.fixture
def parser(streamer):
    return M88kAsmParser(streamer, DiagnosticEngine())


@pytest.fixture
def parser_88110(streamer):
    return M88kAsmParser(streamer, DiagnosticEngine(), cpu="mc88110")


@pytest.fixture
def assembler():
    return Assembler()


def tokens_for(text, lineno=1):
    return TokenSource(tokenize_line(text, lineno))


def parse_statement(parser, text):
    """mnemonic + operands of one instruction line, unmatched."""
    tokens = tokens_for(text)
    name = tokens.lex()
    return parser.parse_instruction(name.text, name.loc, tokens)
