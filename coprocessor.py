#!/usr/bin/env python3
"""Coprocessor conflagration: mul counting and the optimized h computation.

Examples:
  python3 coprocessor.py input.txt --part 1
  python3 coprocessor.py input.txt --part 2 --list
"""

from __future__ import annotations

import argparse
import logging
from typing import Optional, Sequence

from peephole import TemplateNotFound, optimize
from register_machine import (
    COPROCESSOR,
    CoprocessorRegister,
    Instruction,
    Machine,
    format_program,
    load_program,
    parse_program,
)


logger = logging.getLogger(__name__)


def count_multiplies(program: Sequence[Instruction], max_steps: Optional[int] = None) -> int:
    machine = Machine(program, COPROCESSOR)
    machine.run(max_steps=max_steps)
    return machine.mul_count


def final_h(
    program: Sequence[Instruction],
    allow_unoptimized: bool = False,
    max_steps: Optional[int] = None,
) -> int:
    """Value of h after running with a = 1.

    The unoptimized loop is only used when ``allow_unoptimized`` is set;
    otherwise a missing template is an error.
    """
    try:
        program = optimize(program)
    except TemplateNotFound:
        if not allow_unoptimized:
            raise
        logger.warning("divisor loop not found, running the program unoptimized")
    machine = Machine(program, COPROCESSOR)
    machine[CoprocessorRegister.A] = 1
    machine.run(max_steps=max_steps)
    return machine[CoprocessorRegister.H]


def solve(text: str, part: int, allow_unoptimized: bool = False) -> int:
    program = parse_program(text, COPROCESSOR)
    if part == 1:
        return count_multiplies(program)
    if part == 2:
        return final_h(program, allow_unoptimized=allow_unoptimized)
    raise ValueError(f"unknown part {part}")


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("program", help="coprocessor program file ('-' for stdin)")
    parser.add_argument("--part", type=int, choices=(1, 2), default=1)
    parser.add_argument(
        "--allow-unoptimized",
        action="store_true",
        help="fall back to the plain program when the divisor loop is not found",
    )
    parser.add_argument("--list", action="store_true", help="print the optimized listing before running")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    program = load_program(args.program, COPROCESSOR)
    if args.part == 1:
        print("mul executed:", count_multiplies(program))
        return
    if args.list:
        print(format_program(optimize(program)))
    print("h:", final_h(program, allow_unoptimized=args.allow_unoptimized))


if __name__ == "__main__":
    main()
