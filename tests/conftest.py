import platform
import shutil
import subprocess
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

import exprcc


MASK = (1 << 64) - 1


def to_i64(v):
    v &= MASK
    return v - (1 << 64) if v >> 63 else v


def interpret(asm: str) -> int:
    """Execute the instruction subset exprcc emits and return rax at `ret`."""
    regs = {"rax": 0, "rdi": 0, "rdx": 0}
    stack = []
    for line in asm.splitlines():
        line = line.strip()
        if not line or line.startswith(".") or line.endswith(":"):
            continue
        op, _, rest = line.partition(" ")
        args = [a.strip() for a in rest.split(",")] if rest else []
        if op == "push":
            stack.append(regs[args[0]] if args[0] in regs else to_i64(int(args[0])))
        elif op == "pop":
            regs[args[0]] = stack.pop()
        elif op == "mov":
            regs[args[0]] = to_i64(int(args[1]))
        elif op == "add":
            regs[args[0]] = to_i64(regs[args[0]] + regs[args[1]])
        elif op == "sub":
            regs[args[0]] = to_i64(regs[args[0]] - regs[args[1]])
        elif op == "imul":
            regs[args[0]] = to_i64(regs[args[0]] * regs[args[1]])
        elif op == "cqo":
            regs["rdx"] = -1 if regs["rax"] < 0 else 0
        elif op == "idiv":
            # rdx:rax / operand, truncating toward zero
            dividend = (regs["rdx"] << 64) | (regs["rax"] & MASK)
            divisor = regs[args[0]]
            q = abs(dividend) // abs(divisor)
            if (dividend < 0) != (divisor < 0):
                q = -q
            regs["rdx"] = to_i64(dividend - q * divisor)
            regs["rax"] = to_i64(q)
        elif op == "ret":
            assert stack == [], f"stack not empty at ret: {stack}"
            return regs["rax"]
        else:
            raise AssertionError(f"unknown instruction: {line!r}")
    raise AssertionError("program fell off the end without ret")


@pytest.fixture
def run_asm():
    """Return the stack machine interpreter for generated listings."""
    return interpret


@pytest.fixture
def compile_and_run_rc(tmp_path):
    """Compile an expression, assemble it with the system cc and return the exit code."""
    if platform.system() != "Linux" or platform.machine() not in ("x86_64", "AMD64"):
        pytest.skip("native run needs x86-64 Linux")
    cc = shutil.which("cc") or shutil.which("gcc") or shutil.which("clang")
    if cc is None:
        pytest.skip("no C compiler to assemble with")

    def _run(expr: str) -> int:
        s_path = tmp_path / "expr.s"
        s_path.write_text(exprcc.compile_expr(expr), encoding="utf-8")
        out_bin = tmp_path / "expr_bin"
        subprocess.run([cc, "-o", str(out_bin), str(s_path)], check=True)
        result = subprocess.run([str(out_bin)], capture_output=True, timeout=10)
        return result.returncode

    return _run
