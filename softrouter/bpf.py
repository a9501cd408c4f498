"""BPF instruction encoding, validation and a userland interpreter."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

BPF_RELEASE = 199606
BPF_ALIGNMENT = 4
BPF_MEMWORDS = 16

# instruction classes
BPF_LD = 0x00
BPF_LDX = 0x01
BPF_ST = 0x02
BPF_STX = 0x03
BPF_ALU = 0x04
BPF_JMP = 0x05
BPF_RET = 0x06
BPF_MISC = 0x07

# ld/ldx fields
BPF_W = 0x00
BPF_H = 0x08
BPF_B = 0x10
BPF_IMM = 0x00
BPF_ABS = 0x20
BPF_IND = 0x40
BPF_MEM = 0x60
BPF_LEN = 0x80
BPF_MSH = 0xA0

# alu/jmp fields
BPF_ADD = 0x00
BPF_SUB = 0x10
BPF_MUL = 0x20
BPF_DIV = 0x30
BPF_OR = 0x40
BPF_AND = 0x50
BPF_LSH = 0x60
BPF_RSH = 0x70
BPF_NEG = 0x80
BPF_MOD = 0x90
BPF_XOR = 0xA0

BPF_JA = 0x00
BPF_JEQ = 0x10
BPF_JGT = 0x20
BPF_JGE = 0x30
BPF_JSET = 0x40

BPF_K = 0x00
BPF_X = 0x08

# ret
BPF_A = 0x10

# misc
BPF_TAX = 0x00
BPF_TXA = 0x80

_U32 = 0xFFFFFFFF
_WIDTHS = {BPF_W: 4, BPF_H: 2, BPF_B: 1}


class BpfError(Exception):
    """Raised when a filter program cannot be executed."""


@dataclass(frozen=True)
class BpfInsn:
    """One BPF instruction."""

    code: int
    jt: int
    jf: int
    k: int

    def __post_init__(self) -> None:
        if not 0 <= self.code <= 0xFFFF:
            raise ValueError(f"code out of range: {self.code}")
        if not 0 <= self.jt <= 0xFF or not 0 <= self.jf <= 0xFF:
            raise ValueError("jump offsets must fit in 8 bits")
        if not 0 <= self.k <= _U32:
            raise ValueError(f"k out of range: {self.k}")


def bpf_stmt(code: int, k: int) -> BpfInsn:
    return BpfInsn(code & 0xFFFF, 0, 0, k)


def bpf_jump(code: int, k: int, jt: int, jf: int) -> BpfInsn:
    return BpfInsn(code & 0xFFFF, jt, jf, k)


def bpf_class(code: int) -> int:
    return code & 0x07


def bpf_size(code: int) -> int:
    return code & 0x18


def bpf_mode(code: int) -> int:
    return code & 0xE0


def bpf_op(code: int) -> int:
    return code & 0xF0


def bpf_src(code: int) -> int:
    return code & 0x08


def bpf_rval(code: int) -> int:
    return code & 0x18


def bpf_miscop(code: int) -> int:
    return code & 0xF8


def word_align(x: int) -> int:
    """Round ``x`` up to the next multiple of BPF_ALIGNMENT."""
    return (x + (BPF_ALIGNMENT - 1)) & ~(BPF_ALIGNMENT - 1)


_ALU_OPS = {BPF_ADD, BPF_SUB, BPF_MUL, BPF_DIV, BPF_OR, BPF_AND, BPF_LSH, BPF_RSH, BPF_NEG, BPF_MOD, BPF_XOR}
_COND_OPS = {BPF_JEQ, BPF_JGT, BPF_JGE, BPF_JSET}


def validate(program: Sequence[BpfInsn]) -> bool:
    """Check that a program is safe to run: known opcodes, in-range jumps
    and memory slots, no division by a constant zero, and a final return."""
    length = len(program)
    if length < 1:
        return False
    for i, insn in enumerate(program):
        cls = bpf_class(insn.code)
        if cls in (BPF_LD, BPF_LDX):
            mode = bpf_mode(insn.code)
            if mode == BPF_MEM:
                if insn.k >= BPF_MEMWORDS:
                    return False
            elif mode not in (BPF_IMM, BPF_ABS, BPF_IND, BPF_MSH, BPF_LEN):
                return False
        elif cls in (BPF_ST, BPF_STX):
            if insn.k >= BPF_MEMWORDS:
                return False
        elif cls == BPF_ALU:
            op = bpf_op(insn.code)
            if op not in _ALU_OPS:
                return False
            if bpf_src(insn.code) == BPF_K:
                if op in (BPF_DIV, BPF_MOD) and insn.k == 0:
                    return False
                if op in (BPF_LSH, BPF_RSH) and insn.k >= 32:
                    return False
        elif cls == BPF_JMP:
            start = i + 1
            op = bpf_op(insn.code)
            if op == BPF_JA:
                if start + insn.k >= length:
                    return False
            elif op in _COND_OPS:
                if start + insn.jt >= length or start + insn.jf >= length:
                    return False
            else:
                return False
    return bpf_class(program[-1].code) == BPF_RET


def _load(data: bytes, offset: int, width: int) -> Optional[int]:
    if offset < 0 or offset + width > len(data):
        return None
    return int.from_bytes(data[offset:offset + width], "big")


def _memory_slot(k: int) -> int:
    if k >= BPF_MEMWORDS:
        raise BpfError(f"scratch memory index out of range: {k}")
    return k


def _bad(insn: BpfInsn) -> BpfError:
    return BpfError(f"unknown instruction code 0x{insn.code:04x}")


_CONDITIONS = {
    BPF_JEQ: lambda a, v: a == v,
    BPF_JGT: lambda a, v: a > v,
    BPF_JGE: lambda a, v: a >= v,
    BPF_JSET: lambda a, v: (a & v) != 0,
}


def run_filter(program: Optional[Sequence[BpfInsn]], packet: bytes, wirelen: Optional[int] = None) -> int:
    """Run a filter over a packet and return the number of bytes to keep.

    Zero means the packet is rejected; with no program every packet is accepted.
    """
    if program is None:
        return _U32
    data = bytes(packet)
    buflen = len(data)
    if wirelen is None:
        wirelen = buflen
    a = x = 0
    mem = [0] * BPF_MEMWORDS
    pc = 0
    while True:
        if not 0 <= pc < len(program):
            raise BpfError("program ran past its end")
        insn = program[pc]
        pc += 1
        code, k = insn.code, insn.k
        cls = bpf_class(code)

        if cls == BPF_RET:
            rval = bpf_rval(code)
            if rval == BPF_K:
                return k
            if rval == BPF_A:
                return a
            raise _bad(insn)

        if cls == BPF_LD:
            mode, size = bpf_mode(code), bpf_size(code)
            if mode in (BPF_ABS, BPF_IND) and size in _WIDTHS:
                offset = k + (x if mode == BPF_IND else 0)
                value = _load(data, offset, _WIDTHS[size])
                if value is None:
                    return 0
                a = value
            elif size != BPF_W:
                raise _bad(insn)
            elif mode == BPF_LEN:
                a = wirelen & _U32
            elif mode == BPF_IMM:
                a = k
            elif mode == BPF_MEM:
                a = mem[_memory_slot(k)]
            else:
                raise _bad(insn)

        elif cls == BPF_LDX:
            mode, size = bpf_mode(code), bpf_size(code)
            if mode == BPF_MSH and size == BPF_B:
                if k >= buflen:
                    return 0
                x = (data[k] & 0x0F) << 2
            elif size != BPF_W:
                raise _bad(insn)
            elif mode == BPF_IMM:
                x = k
            elif mode == BPF_MEM:
                x = mem[_memory_slot(k)]
            elif mode == BPF_LEN:
                x = wirelen & _U32
            else:
                raise _bad(insn)

        elif cls == BPF_ST:
            if code != BPF_ST:
                raise _bad(insn)
            mem[_memory_slot(k)] = a

        elif cls == BPF_STX:
            if code != BPF_STX:
                raise _bad(insn)
            mem[_memory_slot(k)] = x

        elif cls == BPF_JMP:
            op = bpf_op(code)
            if op == BPF_JA:
                if code != BPF_JMP | BPF_JA:
                    raise _bad(insn)
                pc += k
            elif op in _CONDITIONS:
                operand = x if bpf_src(code) == BPF_X else k
                pc += insn.jt if _CONDITIONS[op](a, operand) else insn.jf
            else:
                raise _bad(insn)

        elif cls == BPF_ALU:
            op = bpf_op(code)
            operand = x if bpf_src(code) == BPF_X else k
            if op == BPF_NEG:
                if code != BPF_ALU | BPF_NEG:
                    raise _bad(insn)
                a = -a & _U32
            elif op == BPF_ADD:
                a = (a + operand) & _U32
            elif op == BPF_SUB:
                a = (a - operand) & _U32
            elif op == BPF_MUL:
                a = (a * operand) & _U32
            elif op in (BPF_DIV, BPF_MOD):
                if operand == 0:
                    return 0
                a = a // operand if op == BPF_DIV else a % operand
            elif op == BPF_AND:
                a &= operand
            elif op == BPF_OR:
                a |= operand
            elif op == BPF_XOR:
                a ^= operand
            elif op in (BPF_LSH, BPF_RSH):
                if operand >= 32:
                    a = 0
                elif op == BPF_LSH:
                    a = (a << operand) & _U32
                else:
                    a >>= operand
            else:
                raise _bad(insn)

        else:  # BPF_MISC
            miscop = bpf_miscop(code)
            if miscop == BPF_TAX:
                x = a
            elif miscop == BPF_TXA:
                a = x
            else:
                raise _bad(insn)