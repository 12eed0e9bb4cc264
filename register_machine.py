#!/usr/bin/env python3
"""Register machine shared by the duet and coprocessor puzzles.

Programs are lists of text lines such as ``set a 1`` or ``jgz a -2``. Each
dialect (``InstructionSet``) fixes its register letters, its arithmetic
opcodes, its jump predicate and whether ``snd``/``rcv`` exist. All arithmetic
is checked signed 64-bit: leaving the range raises instead of wrapping.
"""

from __future__ import annotations

import argparse
import re
import sys
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Dict, FrozenSet, List, Optional, Sequence, Tuple, Type, Union


INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1

NUMBER_RE = re.compile(r"-?[0-9]+")


class ParseError(RuntimeError):
    def __init__(self, message: str, line: Optional[int] = None):
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)
        self.line = line


class ProgramSyntaxError(ParseError):
    pass


class InvalidNumber(ParseError):
    pass


class InvalidRegister(ParseError):
    pass


class MachineError(RuntimeError):
    pass


class ArithmeticOverflow(MachineError):
    pass


# ---------- Instruction set ----------


class DuetRegister(Enum):
    A = "a"
    B = "b"
    C = "c"
    D = "d"
    F = "f"
    I = "i"
    P = "p"


class CoprocessorRegister(Enum):
    A = "a"
    B = "b"
    C = "c"
    D = "d"
    E = "e"
    F = "f"
    G = "g"
    H = "h"


Register = Enum
Operand = Union[Enum, int]


class BinOp(Enum):
    SET = "set"
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    MOD = "mod"


class JumpPredicate(Enum):
    NONZERO = "jnz"
    POSITIVE = "jgz"

    def holds(self, value: int) -> bool:
        if self is JumpPredicate.NONZERO:
            return value != 0
        return value > 0


def format_operand(operand: Operand) -> str:
    if isinstance(operand, int):
        return str(operand)
    return operand.value


@dataclass(frozen=True)
class BinaryOp:
    op: BinOp
    destination: Register
    source: Operand

    def __str__(self) -> str:
        return f"{self.op.value} {self.destination.value} {format_operand(self.source)}"


@dataclass(frozen=True)
class ConditionalJump:
    condition: Operand
    offset: Operand
    predicate: JumpPredicate = JumpPredicate.NONZERO

    def __str__(self) -> str:
        return f"{self.predicate.value} {format_operand(self.condition)} {format_operand(self.offset)}"


@dataclass(frozen=True)
class Send:
    source: Operand

    def __str__(self) -> str:
        return f"snd {format_operand(self.source)}"


@dataclass(frozen=True)
class Receive:
    destination: Register

    def __str__(self) -> str:
        return f"rcv {self.destination.value}"


Instruction = Union[BinaryOp, ConditionalJump, Send, Receive]
Program = Tuple[Instruction, ...]


@dataclass(frozen=True)
class InstructionSet:
    name: str
    registers: Type[Enum]
    binary_ops: FrozenSet[BinOp]
    jump: JumpPredicate
    messaging: bool = False

    def register(self, letter: str) -> Register:
        return self.registers(letter)


DUET = InstructionSet(
    name="duet",
    registers=DuetRegister,
    binary_ops=frozenset({BinOp.SET, BinOp.ADD, BinOp.MUL, BinOp.MOD}),
    jump=JumpPredicate.POSITIVE,
    messaging=True,
)

COPROCESSOR = InstructionSet(
    name="coprocessor",
    registers=CoprocessorRegister,
    binary_ops=frozenset({BinOp.SET, BinOp.SUB, BinOp.MUL, BinOp.MOD}),
    jump=JumpPredicate.NONZERO,
)


# ---------- Parsing ----------


def parse_register(token: str, instruction_set: InstructionSet, line: Optional[int] = None) -> Register:
    try:
        return instruction_set.register(token)
    except ValueError:
        raise InvalidRegister(f"invalid register name {token!r}", line) from None


def parse_operand(token: str, instruction_set: InstructionSet, line: Optional[int] = None) -> Operand:
    if token[0] == "-" or token[0].isdigit():
        if not NUMBER_RE.fullmatch(token):
            raise InvalidNumber(f"invalid number {token!r}", line)
        value = int(token)
        if not INT64_MIN <= value <= INT64_MAX:
            raise InvalidNumber(f"number out of range {token!r}", line)
        return value
    return parse_register(token, instruction_set, line)


def parse_instruction(text: str, instruction_set: InstructionSet, line: Optional[int] = None) -> Instruction:
    tokens = text.split()
    if not tokens:
        raise ProgramSyntaxError("empty instruction", line)
    opcode, args = tokens[0], tokens[1:]

    def expect(count: int) -> None:
        if len(args) != count:
            raise ProgramSyntaxError(f"{opcode} takes {count} operand(s), got {len(args)}", line)

    if opcode == instruction_set.jump.value:
        expect(2)
        return ConditionalJump(
            parse_operand(args[0], instruction_set, line),
            parse_operand(args[1], instruction_set, line),
            instruction_set.jump,
        )
    if instruction_set.messaging and opcode == "snd":
        expect(1)
        return Send(parse_operand(args[0], instruction_set, line))
    if instruction_set.messaging and opcode == "rcv":
        expect(1)
        return Receive(parse_register(args[0], instruction_set, line))
    for op in instruction_set.binary_ops:
        if op.value == opcode:
            expect(2)
            return BinaryOp(
                op,
                parse_register(args[0], instruction_set, line),
                parse_operand(args[1], instruction_set, line),
            )
    raise ProgramSyntaxError(f"unknown opcode {opcode!r}", line)


def parse_program(text: str, instruction_set: InstructionSet) -> Program:
    program: List[Instruction] = []
    for lineno, raw in enumerate(text.splitlines(), start=1):
        if not raw.strip():
            continue
        program.append(parse_instruction(raw, instruction_set, lineno))
    return tuple(program)


def jump_target(index: int, instr: Instruction) -> Optional[int]:
    """Absolute target of a jump with a literal offset, else None."""
    if isinstance(instr, ConditionalJump) and isinstance(instr.offset, int):
        return index + instr.offset
    return None


def format_program(program: Sequence[Instruction]) -> str:
    targets = set()
    for i, instr in enumerate(program):
        target = jump_target(i, instr)
        if target is not None and 0 <= target < len(program):
            targets.add(target)
    lines = []
    for i, instr in enumerate(program):
        marker = ">" if i in targets else " "
        lines.append(f"{i:3}) {marker} {instr}")
    return "\n".join(lines)


# ---------- Arithmetic ----------


def check_int64(value: int) -> int:
    if not INT64_MIN <= value <= INT64_MAX:
        raise ArithmeticOverflow(f"value {value} outside signed 64-bit range")
    return value


def apply_binop(op: BinOp, lhs: int, rhs: int) -> int:
    if op is BinOp.SET:
        return rhs
    if op is BinOp.ADD:
        return check_int64(lhs + rhs)
    if op is BinOp.SUB:
        return check_int64(lhs - rhs)
    if op is BinOp.MUL:
        return check_int64(lhs * rhs)
    # MOD truncates toward zero, like a native signed remainder.
    if rhs == 0:
        raise ArithmeticOverflow(f"{lhs} mod 0")
    if lhs == INT64_MIN and rhs == -1:
        raise ArithmeticOverflow(f"{lhs} mod -1")
    rem = abs(lhs) % abs(rhs)
    return -rem if lhs < 0 else rem


class RegisterFile:
    def __init__(self, registers: Type[Enum]):
        self.registers = registers
        self._slots: Dict[Enum, int] = {reg: i for i, reg in enumerate(registers)}
        self._values: List[int] = [0] * len(self._slots)

    def __getitem__(self, reg: Register) -> int:
        return self._values[self._slots[reg]]

    def __setitem__(self, reg: Register, value: int) -> None:
        self._values[self._slots[reg]] = check_int64(value)

    def as_dict(self) -> Dict[str, int]:
        return {reg.value: self._values[i] for reg, i in self._slots.items()}


# ---------- Machine ----------


class State(Enum):
    PENDING = "pending"
    WAITING_FOR_INPUT = "waiting"
    STOPPED = "stopped"


class ReceivePolicy(Enum):
    # ALWAYS: rcv pops or blocks. NONZERO: rcv is a no-op while its register is 0.
    ALWAYS = "always"
    NONZERO = "nonzero"


class Machine:
    def __init__(
        self,
        program: Sequence[Instruction],
        instruction_set: InstructionSet,
        receive_policy: ReceivePolicy = ReceivePolicy.ALWAYS,
    ):
        self.program: Program = tuple(program)
        self.instruction_set = instruction_set
        self.receive_policy = receive_policy
        self.registers = RegisterFile(instruction_set.registers)
        self.state = State.PENDING
        self.ip = 0
        self.input_queue: Deque[int] = deque()
        self.output_queue: Deque[int] = deque()
        self.send_count = 0
        self.mul_count = 0
        self.steps = 0

    def __getitem__(self, reg: Register) -> int:
        return self.registers[reg]

    def __setitem__(self, reg: Register, value: int) -> None:
        self.registers[reg] = value

    @property
    def halted(self) -> bool:
        return self.state is State.STOPPED

    def value(self, operand: Operand) -> int:
        if isinstance(operand, int):
            return operand
        return self.registers[operand]

    def resume(self) -> None:
        if self.state is State.WAITING_FOR_INPUT and self.input_queue:
            self.state = State.PENDING

    def step(self) -> None:
        self.resume()
        if self.state is not State.PENDING:
            return
        if self.ip >= len(self.program):
            self.state = State.STOPPED
            return
        instr = self.program[self.ip]
        next_ip = self.ip + 1

        if isinstance(instr, BinaryOp):
            rhs = self.value(instr.source)
            self.registers[instr.destination] = apply_binop(instr.op, self.registers[instr.destination], rhs)
            if instr.op is BinOp.MUL:
                self.mul_count += 1
        elif isinstance(instr, ConditionalJump):
            if instr.predicate.holds(self.value(instr.condition)):
                next_ip = self.ip + self.value(instr.offset)
                if not 0 <= next_ip < len(self.program):
                    self.steps += 1
                    self.state = State.STOPPED
                    return
        elif isinstance(instr, Send):
            self.output_queue.append(self.value(instr.source))
            self.send_count += 1
        elif isinstance(instr, Receive):
            if self.receive_policy is ReceivePolicy.ALWAYS or self.registers[instr.destination] != 0:
                if not self.input_queue:
                    self.state = State.WAITING_FOR_INPUT
                    return
                self.registers[instr.destination] = self.input_queue.popleft()
        else:
            raise MachineError(f"unsupported instruction {instr!r}")

        self.steps += 1
        self.ip = next_ip

    def run(self, max_steps: Optional[int] = None) -> int:
        """Step until the machine blocks or stops; returns instructions executed.

        With ``max_steps`` the run may also end while still pending.
        """
        self.resume()
        start = self.steps
        while self.state is State.PENDING:
            if max_steps is not None and self.steps - start >= max_steps:
                break
            self.step()
        return self.steps - start


def load_program(path: str, instruction_set: InstructionSet) -> Program:
    if path == "-":
        return parse_program(sys.stdin.read(), instruction_set)
    with open(path, "r", encoding="utf-8") as f:
        return parse_program(f.read(), instruction_set)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run a register machine program and dump its registers")
    parser.add_argument("program", help="program text file ('-' for stdin)")
    parser.add_argument("--dialect", choices=("duet", "coprocessor"), default="coprocessor")
    parser.add_argument("--max-steps", type=int, default=1_000_000)
    parser.add_argument("--list", action="store_true", help="print the program listing and exit")
    args = parser.parse_args()

    instruction_set = DUET if args.dialect == "duet" else COPROCESSOR
    program = load_program(args.program, instruction_set)
    if args.list:
        print(format_program(program))
        return

    machine = Machine(program, instruction_set)
    steps = machine.run(max_steps=args.max_steps)
    print("state:", machine.state.value, "ip:", machine.ip, "steps:", steps)
    print("registers:", machine.registers.as_dict())
    if machine.output_queue:
        print("sent:", list(machine.output_queue))


if __name__ == "__main__":
    main()
