#!/usr/bin/env python3
"""Peephole rewrite of the coprocessor's divisor-test loop.

The coprocessor programs all contain the same doubly nested loop checking
whether ``b`` has a divisor ``d * e == b``; only the register letters
differ between inputs. ``optimize`` finds that loop, works out which
letters play which role, and swaps in a single loop using ``mod``.

Only this one idiom is recognized. Literals inside the window are not
compared, the template's own values are assumed.
"""

from __future__ import annotations

import argparse
import logging
from enum import Enum
from typing import Dict, List, Optional, Sequence, Type

from register_machine import (
    COPROCESSOR,
    BinaryOp,
    ConditionalJump,
    CoprocessorRegister,
    Instruction,
    Operand,
    Program,
    Register,
    format_program,
    load_program,
    parse_program,
)


logger = logging.getLogger(__name__)


class TemplateNotFound(RuntimeError):
    pass


TEMPLATE: Program = parse_program(
    """
    set e 2
    set g d
    mul g e
    sub g b
    jnz g 2
    set f 0
    sub e -1
    set g e
    sub g b
    jnz g -8
    sub d -1
    set g d
    sub g b
    jnz g -13
    """,
    COPROCESSOR,
)

# Clears f if some d below b divides b. Exits with g == 0 either way.
REPLACEMENT: Program = parse_program(
    """
    set g b
    mod g d
    jnz g 3
    set f 0
    jnz 1 4
    sub d -1
    set g d
    sub g b
    jnz g -8
    """,
    COPROCESSOR,
)


class RegisterMapping:
    """Partial bijection between candidate and template registers.

    ``forward`` maps candidate -> template, ``reverse`` template -> candidate.
    """

    def __init__(self, registers: Type[Enum] = CoprocessorRegister):
        self._slots: Dict[Enum, int] = {reg: i for i, reg in enumerate(registers)}
        self.forward: List[Optional[Register]] = [None] * len(self._slots)
        self.reverse: List[Optional[Register]] = [None] * len(self._slots)

    def try_insert(self, candidate: Register, template: Register) -> bool:
        fwd = self.forward[self._slots[candidate]]
        rev = self.reverse[self._slots[template]]
        if fwd is None and rev is None:
            self.forward[self._slots[candidate]] = template
            self.reverse[self._slots[template]] = candidate
            return True
        return fwd == template and rev == candidate

    def __repr__(self) -> str:
        pairs = ", ".join(
            f"{tmpl.value}->{cand.value}" for tmpl, cand in zip(self._slots, self.reverse) if cand is not None
        )
        return f"RegisterMapping({pairs})"

    def reverse_reg(self, template: Register) -> Optional[Register]:
        return self.reverse[self._slots[template]]

    def reverse_operand(self, operand: Operand) -> Operand:
        if isinstance(operand, int):
            return operand
        reg = self.reverse_reg(operand)
        if reg is None:
            raise KeyError(f"template register {operand.value} is not mapped")
        return reg

    def translate(self, instr: Instruction) -> Instruction:
        if isinstance(instr, BinaryOp):
            return BinaryOp(instr.op, self.reverse_operand(instr.destination), self.reverse_operand(instr.source))
        if isinstance(instr, ConditionalJump):
            return ConditionalJump(
                self.reverse_operand(instr.condition),
                self.reverse_operand(instr.offset),
                instr.predicate,
            )
        raise TypeError(f"cannot translate {instr!r}")


def _unify_operand(mapping: RegisterMapping, candidate: Operand, template: Operand) -> bool:
    cand_is_value = isinstance(candidate, int)
    if cand_is_value != isinstance(template, int):
        return False
    if cand_is_value:
        return True
    return mapping.try_insert(candidate, template)


def extract_register_mapping(
    window: Sequence[Instruction],
    template: Sequence[Instruction] = TEMPLATE,
) -> Optional[RegisterMapping]:
    if len(window) < len(template):
        return None
    mapping = RegisterMapping()
    for cand, tmpl in zip(window, template):
        if isinstance(cand, BinaryOp) and isinstance(tmpl, BinaryOp):
            if cand.op is not tmpl.op:
                return None
            if not mapping.try_insert(cand.destination, tmpl.destination):
                return None
            if not _unify_operand(mapping, cand.source, tmpl.source):
                return None
        elif isinstance(cand, ConditionalJump) and isinstance(tmpl, ConditionalJump):
            if cand.predicate is not tmpl.predicate:
                return None
            if not _unify_operand(mapping, cand.condition, tmpl.condition):
                return None
            if not _unify_operand(mapping, cand.offset, tmpl.offset):
                return None
        else:
            return None
    return mapping


def _shift_offset(instr: Instruction, delta: int) -> Instruction:
    assert isinstance(instr, ConditionalJump) and isinstance(instr.offset, int)
    return ConditionalJump(instr.condition, instr.offset + delta, instr.predicate)


def rewrite(
    program: Sequence[Instruction],
    start: int,
    mapping: RegisterMapping,
    template: Sequence[Instruction] = TEMPLATE,
    replacement: Sequence[Instruction] = REPLACEMENT,
) -> Program:
    end = start + len(template)
    delta = len(replacement) - len(template)
    result: List[Instruction] = []

    for j, instr in enumerate(program[:start]):
        if isinstance(instr, ConditionalJump) and isinstance(instr.offset, int):
            if max(0, j + instr.offset) >= end:
                instr = _shift_offset(instr, delta)
        result.append(instr)

    result.extend(mapping.translate(instr) for instr in replacement)

    for j, instr in enumerate(program[end:], start=end):
        if isinstance(instr, ConditionalJump) and isinstance(instr.offset, int):
            if j + instr.offset < start:
                instr = _shift_offset(instr, -delta)
        result.append(instr)

    return tuple(result)


def optimize(
    program: Sequence[Instruction],
    template: Sequence[Instruction] = TEMPLATE,
    replacement: Sequence[Instruction] = REPLACEMENT,
) -> Program:
    """Rewrite the first occurrence of ``template``; raises TemplateNotFound."""
    for start in range(len(program) - len(template) + 1):
        mapping = extract_register_mapping(program[start:start + len(template)], template)
        if mapping is None:
            continue
        logger.debug("template matched at %d: %s", start, mapping)
        return rewrite(program, start, mapping, template, replacement)
    raise TemplateNotFound("divisor loop template not found in program")


def main() -> None:
    parser = argparse.ArgumentParser(description="Print a coprocessor program after the peephole rewrite")
    parser.add_argument("program", help="coprocessor program file ('-' for stdin)")
    args = parser.parse_args()

    program = load_program(args.program, COPROCESSOR)
    print(format_program(optimize(program)))


if __name__ == "__main__":
    main()
