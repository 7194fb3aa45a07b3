#!/usr/bin/env python3
from __future__ import annotations

import io
import re
import sys
from dataclasses import dataclass
from typing import List, Optional, TextIO, Tuple

# ----------------------------
# Errors
# ----------------------------

class UsageError(Exception):
    pass

class LexError(SyntaxError):
    def __init__(self, src: str, pos: int):
        self.pos = pos
        self.rest = src[pos:]
        super().__init__(f"cannot tokenize {src[pos]!r} at {pos}: {self.rest!r}")

class LiteralTooLargeError(LexError):
    def __init__(self, src: str, pos: int, ndigits: int):
        self.pos = pos
        self.rest = src[pos:]
        self.ndigits = ndigits
        SyntaxError.__init__(self, f"integer literal at {pos} is too large ({ndigits} digits)")

class ParseError(SyntaxError):
    def __init__(self, msg: str, pos: int):
        self.pos = pos
        super().__init__(msg)

class UnexpectedTokenError(ParseError):
    def __init__(self, tok: Tok):
        self.tok = tok
        if tok.kind == "EOF":
            msg = f"unexpected end of input at {tok.pos}"
        else:
            msg = f"unexpected token {tok.text!r} at {tok.pos}"
        super().__init__(msg, tok.pos)

class UnmatchedParenError(ParseError):
    def __init__(self, open_tok: Tok, found: Tok):
        self.open_tok = open_tok
        self.found = found
        got = "end of input" if found.kind == "EOF" else repr(found.text)
        super().__init__(
            f"unmatched '(' at {open_tok.pos}: expected ')' at {found.pos}, got {got}",
            found.pos,
        )

class NestingTooDeepError(ParseError):
    def __init__(self, tok: Tok):
        self.tok = tok
        super().__init__(
            f"parentheses nested deeper than {MAX_PAREN_DEPTH} at {tok.pos}", tok.pos
        )

class CodegenError(Exception):
    pass


# ----------------------------
# Lexer
# ----------------------------

TOKEN_SPEC = [
    ("NUMBER",   r"[0-9]+"),
    ("PLUS",     r"\+"),
    ("MINUS",    r"-"),
    ("STAR",     r"\*"),
    ("SLASH",    r"/"),
    ("LPAREN",   r"\("),
    ("RPAREN",   r"\)"),
    ("SKIP",     r"\s+"),
    ("MISMATCH", r"."),
]

TOKEN_RE = re.compile("|".join(f"(?P<{name}>{pat})" for name, pat in TOKEN_SPEC), re.DOTALL)

@dataclass(frozen=True)
class Tok:
    kind: str
    value: Optional[int]
    pos: int
    text: str

def lex(src: str) -> List[Tok]:
    toks: List[Tok] = []
    for m in TOKEN_RE.finditer(src):
        kind = m.lastgroup
        text = m.group()
        pos = m.start()
        if kind == "SKIP":
            continue
        if kind == "MISMATCH":
            raise LexError(src, pos)
        value = None
        if kind == "NUMBER":
            try:
                value = int(text)
            except ValueError:
                # int() refuses very long digit strings (sys.get_int_max_str_digits)
                raise LiteralTooLargeError(src, pos, len(text)) from None
        toks.append(Tok(kind, value, pos, text))
    toks.append(Tok("EOF", None, len(src), ""))
    return toks


# ----------------------------
# AST
# ----------------------------

class Expr: pass

@dataclass
class Num(Expr):
    value: int

@dataclass
class Binary(Expr):
    op: str
    lhs: Expr
    rhs: Expr

def evaluate(e: Expr) -> int:
    """Evaluate a tree directly, with C semantics for division (truncate toward zero)."""
    if isinstance(e, Num):
        return e.value
    if isinstance(e, Binary):
        a = evaluate(e.lhs)
        b = evaluate(e.rhs)
        if e.op == "+":
            return a + b
        if e.op == "-":
            return a - b
        if e.op == "*":
            return a * b
        if e.op == "/":
            q = abs(a) // abs(b)
            return q if (a < 0) == (b < 0) else -q
    raise ValueError(f"cannot evaluate {e!r}")


# ----------------------------
# Parser (recursive descent)
# ----------------------------

MAX_PAREN_DEPTH = 200

class Parser:
    def __init__(self, toks: List[Tok]):
        self.toks = toks
        self.i = 0
        self.depth = 0

    def cur(self) -> Tok:
        return self.toks[self.i]

    def match(self, kind: str) -> bool:
        return self.cur().kind == kind

    def consume(self, kind: str) -> Optional[Tok]:
        t = self.cur()
        if t.kind != kind:
            return None
        self.i += 1
        return t

    def parse(self) -> Expr:
        e = self.parse_expr()
        if not self.match("EOF"):
            raise UnexpectedTokenError(self.cur())
        return e

    # expr := term (('+' | '-') term)*
    def parse_expr(self) -> Expr:
        e = self.parse_term()
        while True:
            if self.consume("PLUS"):
                e = Binary("+", e, self.parse_term())
            elif self.consume("MINUS"):
                e = Binary("-", e, self.parse_term())
            else:
                return e

    # term := factor (('*' | '/') factor)*
    def parse_term(self) -> Expr:
        e = self.parse_factor()
        while True:
            if self.consume("STAR"):
                e = Binary("*", e, self.parse_factor())
            elif self.consume("SLASH"):
                e = Binary("/", e, self.parse_factor())
            else:
                return e

    # factor := NUMBER | '(' expr ')'
    def parse_factor(self) -> Expr:
        t = self.cur()
        if self.consume("LPAREN"):
            if self.depth >= MAX_PAREN_DEPTH:
                raise NestingTooDeepError(t)
            self.depth += 1
            e = self.parse_expr()
            self.depth -= 1
            if not self.consume("RPAREN"):
                raise UnmatchedParenError(t, self.cur())
            return e
        if self.consume("NUMBER"):
            return Num(t.value)
        raise UnexpectedTokenError(t)


# ----------------------------
# Codegen (x86-64, Intel syntax)
# ----------------------------

PROLOGUE = [
    ".intel_syntax noprefix",
    ".global main",
    "main:",
]

EPILOGUE = [
    "  pop rax",
    "  ret",
]

ARITH = {
    "+": ["  add rax, rdi"],
    "-": ["  sub rax, rdi"],
    "*": ["  imul rax, rdi"],
    # cqo sign-extends rax into rdx:rax before the 128/64 divide
    "/": ["  cqo", "  idiv rdi"],
}

IMM32_MIN = -(1 << 31)
IMM32_MAX = (1 << 31) - 1

class Codegen:
    def __init__(self, out: TextIO):
        self.out = out

    def emit(self, s: str) -> None:
        self.out.write(s + "\n")

    def gen(self, node: Expr) -> None:
        """Emit stack code for node, leaving its value on top of the stack."""
        # (node, children_done) pairs; lhs is pushed last so it is emitted first
        work: List[Tuple[Expr, bool]] = [(node, False)]
        while work:
            e, done = work.pop()
            if isinstance(e, Num):
                self.gen_num(e.value)
            elif isinstance(e, Binary):
                if done:
                    self.gen_binary(e.op)
                else:
                    work.append((e, True))
                    work.append((e.rhs, False))
                    work.append((e.lhs, False))
            else:
                raise CodegenError(f"Unsupported expression node: {type(e).__name__}")

    def gen_num(self, value: int) -> None:
        if IMM32_MIN <= value <= IMM32_MAX:
            self.emit(f"  push {value}")
        else:
            self.emit(f"  mov rax, {value}")
            self.emit("  push rax")

    def gen_binary(self, op: str) -> None:
        if op not in ARITH:
            raise CodegenError(f"Unsupported binary op {op}")
        self.emit("  pop rdi")
        self.emit("  pop rax")
        for line in ARITH[op]:
            self.emit(line)
        self.emit("  push rax")

    def program(self, node: Expr) -> None:
        for line in PROLOGUE:
            self.emit(line)
        self.gen(node)
        for line in EPILOGUE:
            self.emit(line)


# ----------------------------
# Driver
# ----------------------------

HELP = """\
Usage:
  exprcc EXPR

Compile an integer expression (+ - * / and parentheses) to x86-64 assembly
that returns its value from main. Example: exprcc "1 + 2 * (3 - 4)"
"""

def parse_source(src: str) -> Expr:
    return Parser(lex(src)).parse()

def compile_expr(src: str) -> str:
    node = parse_source(src)
    buf = io.StringIO()
    Codegen(buf).program(node)
    return buf.getvalue()

def expression_arg(argv: List[str]) -> str:
    if len(argv) != 2:
        raise UsageError(f"expected 1 argument, got {len(argv) - 1}")
    return argv[1]

def main(argv: List[str]) -> int:
    try:
        node = parse_source(expression_arg(argv))
    except UsageError as e:
        print(f"exprcc: {e}", file=sys.stderr)
        print(HELP, file=sys.stderr)
        return 1
    except SyntaxError as e:
        print(f"exprcc: {e}", file=sys.stderr)
        return 1

    Codegen(sys.stdout).program(node)
    return 0

def cli() -> None:
    raise SystemExit(main(sys.argv))

if __name__ == "__main__":
    cli()
