#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
m88kasm: Assembler front end for the Motorola 88000 (mc88100 / mc88110):
  - Parse each statement, match it against the instruction table and encode it.
  - Collect every statement error instead of stopping at the first one.
  - Switch to the mc88110 feature set with the .requires_88110 directive.
  - Leave symbolic fields as fixups; linking is out of scope.

"""
version = "1.0.0"
# -------------------------------------------------
# python version : 3.12
# -------------------------------------------------

import sys
import time
import argparse

import logging
from rich.console import Console, Group
from rich import box
from rich.table import Table
from rich.logging import RichHandler
from rich.panel import Panel
from rich.markup import escape

from m88k_errors import AsmError, AsmSyntaxError, DiagnosticEngine, InternalInvariant
from m88k_isa import CPU_VARIANTS, DEFAULT_CPU
from m88k_lexer import TokenKind, TokenSource, parse_expression, tokenize_line
from m88k_parser import M88kAsmParser
from m88k_streamer import ObjectStreamer, RecordType, WORD_SIZE

DEFAULT_CODE_START = 0x0
DEFAULT_DATA_START = 0x1000

console = Console()
logger = logging.getLogger("rich")

# --------------------------------------------------
# Assembler
# --------------------------------------------------
class Assembler:
    """
    Statement loop around M88kAsmParser.

    A statement is one line: optional labels, then a directive or an
    instruction. An AsmError abandons only the current statement.
    """
    def __init__(self, cpu=DEFAULT_CPU, code_start=DEFAULT_CODE_START,
                 data_start=DEFAULT_DATA_START):
        self.diag = DiagnosticEngine()
        self.streamer = ObjectStreamer(code_start, data_start)
        self.parser = M88kAsmParser(self.streamer, self.diag, cpu)
        self.source_lines = {}

    def assemble(self, lines):
        for lineno, raw_line in enumerate(lines, start=1):
            self.assemble_line(raw_line.rstrip("\n"), lineno)
        return self.streamer.records

    def assemble_line(self, text, lineno):
        self.source_lines[lineno] = text.strip()
        try:
            tokens = TokenSource(tokenize_line(text, lineno))
        except AsmError as e:
            self.diag.report(e)
            return
        try:
            self.parse_statement(tokens)
        except AsmError as e:
            self.diag.report(e)
            tokens.eat_to_end_of_statement()

    def parse_statement(self, tokens):
        # labels: name ':'
        while tokens.is_kind(TokenKind.IDENTIFIER) and tokens.peek(1).is_kind(TokenKind.COLON):
            label = tokens.lex()
            tokens.lex()
            self.streamer.emit_label(label.text, label.loc)

        if tokens.is_kind(TokenKind.END_OF_STATEMENT):
            return
        if tokens.is_not(TokenKind.IDENTIFIER):
            raise AsmSyntaxError("unexpected token at start of statement", tokens.get_loc())

        name = tokens.lex()
        if name.text.startswith("."):
            if not self.parser.parse_directive(name, tokens):
                self.parse_default_directive(name, tokens)
            return

        operands = self.parser.parse_instruction(name.text.lower(), name.loc, tokens)
        self.parser.match_and_emit_instruction(operands, name.loc)

    def parse_default_directive(self, directive, tokens):
        name = directive.text.lower()
        if name in (".text", ".data"):
            self.streamer.switch_section(name)
        elif name in (".globl", ".global"):
            if tokens.is_not(TokenKind.IDENTIFIER):
                raise AsmSyntaxError(f"expected symbol name after '{name}'", tokens.get_loc())
            self.streamer.emit_global(tokens.lex().text)
        elif name == ".align":
            if tokens.is_not(TokenKind.INTEGER):
                raise AsmSyntaxError("expected alignment value", tokens.get_loc())
            self.streamer.emit_align(tokens.lex().int_val, directive.loc)
        elif name == ".word":
            while True:
                loc = tokens.get_loc()
                expr = parse_expression(tokens)
                if expr is None:
                    raise AsmSyntaxError("expected expression", loc)
                self.streamer.emit_word(expr, loc)
                if tokens.is_not(TokenKind.COMMA):
                    break
                tokens.lex()
        else:
            raise AsmSyntaxError(f"unknown directive '{directive.text}'", directive.loc)

        if tokens.is_not(TokenKind.END_OF_STATEMENT):
            raise AsmSyntaxError(f"unexpected token in '{name}' directive", tokens.get_loc())

# --------------------------------------------------
# Overlap check
# --------------------------------------------------
def check_section_overlap(code_start, code_size, data_start, data_size):
    """
    Check for overlap between the .text and .data sections.

    return: None if no overlap, raise AsmError if overlap.
    """
    if code_size == 0 or data_size == 0:
        return
    code_min = code_start
    code_max = code_start + code_size - 1
    data_min = data_start
    data_max = data_start + data_size - 1

    if code_max < data_min or data_max < code_min:
        return
    raise AsmError(f"Code section (0x{code_min:X}-0x{code_max:X}) overlaps with Data section (0x{data_min:X}-0x{data_max:X})")

# --------------------------------------------------
# emit_files
# --------------------------------------------------
def format_word(word, word_format="hex"):
    if word_format == "bin":
        return "{:032b}".format(word)
    return "{:08X}".format(word)

def emit_files(assembler, outwordfile, outread=None, word_format="hex", fmt="hex", verbose=False):
    """
    Emit output files from the streamer records.
    - outwordfile: one 32-bit word per line, from address 0 to the last word
    - outread: human-readable listing (optional)
    """
    records = assembler.streamer.records
    max_addr = max((r.address for r in records), default=-WORD_SIZE)
    mem_size = max_addr // WORD_SIZE + 1
    memory = [0] * mem_size
    for record in records:
        memory[record.address // WORD_SIZE] = record.word

    with open(outwordfile, "w", encoding="utf-8") as f:
        for word in memory:
            f.write(format_word(word, word_format) + "\n")
    if verbose:
        logger.info(f"Wrote word file => {outwordfile}, {mem_size} words")

    if outread:
        labels = {}
        for name, (section, address) in assembler.streamer.symbols.items():
            labels.setdefault((section, address), []).append(name)
        with open(outread, "w", encoding="utf-8") as rf:
            for record in records:
                names = labels.get((record.section, record.address), [])
                for name in names:
                    rf.write(f"{name}:\n")
                source = assembler.source_lines.get(record.loc.line, "") if record.loc else ""
                if fmt == "dec":
                    word_str = str(record.word)
                else:
                    word_str = f"0x{record.word:08X}"
                line_str = f"{record.address:08x} | {word_str} | {record.section} | {source}"
                if record.fixups:
                    line_str += " <- fixup: " + ", ".join(str(fx) for fx in record.fixups)
                rf.write(line_str + "\n")
        if verbose:
            logger.info(f"Wrote readable text file => {outread}")

# --------------------------------------------------
# main
# --------------------------------------------------
def parse_memory_offsets(offsets):
    """
    parse `code=<value>,data=<value>`.

    return: (code_start, data_start)
    """
    code_start = DEFAULT_CODE_START
    data_start = DEFAULT_DATA_START
    for ov in offsets.split(","):
        if '=' not in ov:
            raise AsmError(f"Invalid memory_offset format: '{ov}'. Expected format: key=value.")
        key, val = ov.split("=", 1)
        key = key.strip().lower()
        try:
            val = int(val, 0)
        except ValueError:
            raise AsmError(f"Invalid offset value for '{key}': '{val}'")
        if val % WORD_SIZE:
            raise AsmError(f"Offset for '{key}' must be word aligned: 0x{val:X}")
        if key == "code":
            code_start = val
        elif key == "data":
            data_start = val
        else:
            raise AsmError(f"Unknown section key '{key}'. Supported keys: code, data.")
    return code_start, data_start

def build_arg_parser():
    parser = argparse.ArgumentParser(description="m88kasm: Assembler for the Motorola 88000")
    parser.add_argument("-i", "--input", required=True,
                        help="Input assembly file path.")
    parser.add_argument("-o", "--output", required=True,
                        help="Output word file path.")
    parser.add_argument("-c", "--cpu", choices=sorted(CPU_VARIANTS), default=DEFAULT_CPU,
                        help=f"CPU variant selecting the initial feature set (default: {DEFAULT_CPU}).")
    parser.add_argument("-m", "--memory_offset", type=str,
                        default=f"code={DEFAULT_CODE_START:#x},data={DEFAULT_DATA_START:#x}",
                        help="Section start addresses. Format: code=<value>,data=<value>.")
    parser.add_argument("-w", "--word_format", choices=["hex", "bin"], default="hex",
                        help="Word format in the output file (hex, bin).")
    parser.add_argument("-r", "--readable", action="store_true",
                        help="Generate a readable listing with addresses, source and fixups.")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable verbose output.")
    parser.add_argument("-l", "--log", action="store_true",
                        help="Enable log file output.")
    parser.add_argument("-d", "--debug", action="store_true",
                        help="Enable debugging mode.")
    parser.add_argument("-f", "--param_format", choices=["hex", "dec"], default="hex",
                        help="Word format in the readable file (hex, dec).")
    return parser

def setup_logging(args):
    level = logging.WARNING
    if args.verbose:
        level = logging.INFO
    if args.debug:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="    %(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True, markup=False)],
    )
    logger.setLevel(level)

    LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s[%(filename)s:%(lineno)s]"
    log_file_handler = logging.FileHandler(f"{args.output}.log", mode="w", encoding="utf-8") if args.log else logging.NullHandler()
    log_file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(log_file_handler)

def print_records_table(assembler):
    records_table = Table(title="Encoded Statements", box=box.MINIMAL_DOUBLE_HEAD)
    records_table.add_column("Address", style="yellow", no_wrap=True)
    records_table.add_column("Word", style="green")
    records_table.add_column("Section", style="cyan")
    records_table.add_column("Opcode", style="magenta")
    records_table.add_column("Source", style="white")
    records_table.add_column("Fixups", style="red")
    for record in assembler.streamer.records:
        opcode = record.inst.opcode if record.type == RecordType.INSTRUCTION else ".word"
        source = assembler.source_lines.get(record.loc.line, "") if record.loc else "-"
        records_table.add_row(
            f"0x{record.address:08X}",
            f"{record.word:08X}",
            record.section,
            opcode,
            source,
            ", ".join(str(fx) for fx in record.fixups) or "-",
        )
    console.print(Panel.fit(records_table, title="[bold green][DEBUG][/bold green] [bold white]Information[/bold white]", style="bold green"))

def main(argv=None):
    start_time = time.time()

    # 0) Parse arguments
    args = build_arg_parser().parse_args(argv)
    setup_logging(args)

    # 1) Read input
    try:
        with open(args.input, "r", encoding="utf-8") as f:
            lines = f.readlines()
    except FileNotFoundError:
        raise AsmError(f"Input file '{args.input}' not found.")

    logger.info(f"Parsing input => {args.input}")

    # 2) Section offsets
    code_start, data_start = parse_memory_offsets(args.memory_offset)

    # 3) Assemble every statement
    assembler = Assembler(cpu=args.cpu, code_start=code_start, data_start=data_start)
    assembler.assemble(lines)

    if args.debug:
        print_records_table(assembler)

    # 4) Check overlap
    text = assembler.streamer.sections[".text"]
    data = assembler.streamer.sections[".data"]
    check_section_overlap(text.start, text.size, data.start, data.size)

    errors = assembler.diag.errors
    warnings = assembler.diag.warnings
    if errors:
        raise AsmError(f"{len(errors)} error(s), {len(warnings)} warning(s) in {args.input}")

    logger.info("Assembly complete.")

    # 5) Emit output files
    outread = None
    if args.readable:
        outread = args.output + "_readable.txt"

    logger.info("Emitting output files...")
    emit_files(assembler, args.output, outread=outread, word_format=args.word_format,
               fmt=args.param_format, verbose=args.verbose)

    finish_time = time.time()

    # 6) Summary
    output_table = Table(title="[bold white]Output File:[/bold white]", title_justify="left", box=box.MINIMAL_DOUBLE_HEAD, show_lines=True)
    output_table.add_column("Type", style="white", no_wrap=True)
    output_table.add_column("File", style="magenta")
    output_table.add_row("Word File", args.output)
    if outread:
        output_table.add_row("Readable File(Text)", outread)

    summary = f"[bold white]CPU:[/bold white] [bold green]{assembler.parser.cpu}[/bold green]\n\n\
[bold white]Code section:[/bold white] [bold blue]0x{text.start:X}\t- 0x{text.address:X}[/bold blue] ({text.size} bytes)\n\
[bold white]Data section:[/bold white] [bold blue]0x{data.start:X}\t- 0x{data.address:X}[/bold blue] ({data.size} bytes)\n\
[bold white]Warnings:[/bold white] [bold yellow]{len(warnings)}[/bold yellow]\n\n\
[bold white]Input File:[/bold white]\t[bold magenta]{args.input}[/bold magenta]"

    if args.verbose or args.debug:
        summary = f"[bold white]Elapsed Time: [/bold white]: [bold green]{finish_time-start_time:.4f}[/bold green] seconds\n\n\
[bold white]Total Symbols:[/bold white] [bold green]{len(assembler.streamer.symbols)}[/bold green]\n\
[bold white]Total Records:[/bold white] [bold green]{len(assembler.streamer.records)}[/bold green]\n\n" + summary

    panel = Panel.fit(Group(summary, output_table), title="[bold blue][INFO][/bold blue] Assembly Summary", subtitle=f"m88kasm v{version}", style="bold blue", padding=(2, 1))
    console.print("\n", panel)
    return 0

def run(argv=None):
    try:
        return main(argv)
    except AsmError as e:
        logger.error(f"{e}")
        summary = f"[bold red]Assembly Failed with AsmError[/bold red]\n\nCheck:\n[bold white]{escape(str(e))}[/bold white]"
        panel = Panel.fit(summary, title="Assembly Summary", subtitle=f"m88kasm v{version}", style="bold red", padding=(2, 1))
        console.print(panel)
        return 1
    except InternalInvariant as ex:
        logger.critical(f"internal error: {ex}")
        summary = f"[bold red]Assembly Aborted on Internal Error[/bold red]\n\nCheck:\n[bold white]{escape(str(ex))}[/bold white]"
        panel = Panel.fit(summary, title="Assembly Summary", subtitle=f"m88kasm v{version}", style="bold red", padding=(2, 1))
        console.print(panel)
        return 2
    except Exception as ex:
        logger.critical(f"{ex}")
        summary = f"[bold red]Assembly Failed with Exception[/bold red]\n\nCheck:\n[bold white]{escape(str(ex))}[/bold white]"
        panel = Panel.fit(summary, title="Assembly Summary", subtitle=f"m88kasm v{version}", style="bold red", padding=(2, 1))
        console.print(panel)
        return 2

if __name__ == "__main__":
    sys.exit(run())
