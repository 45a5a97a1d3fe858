#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Error taxonomy and diagnostic collection for m88kasm.

Every recoverable error derives from AsmError and aborts only the statement
being assembled. InternalInvariant is deliberately outside that hierarchy:
it means an upstream stage broke its contract and the whole run must stop.
"""

import logging

logger = logging.getLogger("rich")

# --------------------------------------------------
# Severity
# --------------------------------------------------
class Severity:
    NOTE = "note"
    WARNING = "warning"
    ERROR = "error"

# --------------------------------------------------
# Recoverable errors
# --------------------------------------------------
class AsmError(Exception):
    def __init__(self, message, loc=None):
        super().__init__(message)
        self.message = message
        self.loc = loc

    def __str__(self):
        if self.loc is not None:
            return f"line {self.loc}: {self.message}"
        return self.message

class LexicalError(AsmError):
    pass

class AsmSyntaxError(AsmError):
    pass

class RangeError(AsmError):
    pass

class UnknownRegister(AsmError):
    pass

class UnknownMnemonic(AsmError):
    def __init__(self, message, loc=None, suggestions=()):
        super().__init__(message, loc)
        self.suggestions = list(suggestions)

class MissingFeature(AsmError):
    def __init__(self, message, loc=None, features=()):
        super().__init__(message, loc)
        self.features = list(features)

class InvalidOperandClass(AsmError):
    def __init__(self, message, loc=None, operand_index=None, kind=None):
        super().__init__(message, loc)
        self.operand_index = operand_index
        self.kind = kind

# --------------------------------------------------
# Fatal errors
# --------------------------------------------------
class InternalInvariant(Exception):
    """upstream contract violation; never caught at statement level."""
    pass

# --------------------------------------------------
# Diagnostics
# --------------------------------------------------
class Diagnostic:
    def __init__(self, severity, message, loc):
        self.severity = severity
        self.message = message
        self.loc = loc

    def as_tuple(self):
        return (self.severity, self.message, self.loc)

    def __eq__(self, other):
        if not isinstance(other, Diagnostic):
            return NotImplemented
        return self.as_tuple() == other.as_tuple()

    def __repr__(self):
        return f"Diagnostic({self.severity!r}, {self.message!r}, {self.loc!r})"

    def __str__(self):
        prefix = f"line {self.loc}: " if self.loc is not None else ""
        return f"{prefix}{self.severity}: {self.message}"


class DiagnosticEngine:
    """
    Collects location-tagged errors and warnings for one assembly run.

    Each diagnostic is also forwarded to the logger, so the console shows
    them as they happen while callers can still inspect the full list.
    """
    def __init__(self):
        self.diagnostics = []

    def error(self, message, loc=None):
        diag = Diagnostic(Severity.ERROR, message, loc)
        self.diagnostics.append(diag)
        logger.error(str(diag))
        return diag

    def warning(self, message, loc=None):
        diag = Diagnostic(Severity.WARNING, message, loc)
        self.diagnostics.append(diag)
        logger.warning(str(diag))
        return diag

    def report(self, exc):
        """
        record a recoverable AsmError as an error diagnostic.

        return: the recorded Diagnostic
        """
        return self.error(exc.message, exc.loc)

    @property
    def errors(self):
        return [d for d in self.diagnostics if d.severity == Severity.ERROR]

    @property
    def warnings(self):
        return [d for d in self.diagnostics if d.severity == Severity.WARNING]

    def has_errors(self):
        return any(d.severity == Severity.ERROR for d in self.diagnostics)
