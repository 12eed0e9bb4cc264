#!/usr/bin/env python3
"""Duet: two register machines talking through message queues.

Examples:
  python3 duet.py input.txt --part 1
  python3 duet.py input.txt --part 2
"""

from __future__ import annotations

import argparse
import logging
from typing import Optional, Sequence

from register_machine import (
    DUET,
    DuetRegister,
    Instruction,
    Machine,
    ReceivePolicy,
    State,
    load_program,
    parse_program,
)


logger = logging.getLogger(__name__)


class Scheduler:
    """Round-robin driver for a pair of machines.

    Each machine's output queue is only ever drained here, into the other
    machine's input queue, so values keep their order per direction.
    """

    def __init__(self, first: Machine, second: Machine):
        self.first = first
        self.second = second

    @property
    def deadlocked(self) -> bool:
        return all(
            m.state is State.WAITING_FOR_INPUT and not m.input_queue
            for m in (self.first, self.second)
        )

    def relay(self) -> None:
        if self.first.output_queue:
            self.second.input_queue.extend(self.first.output_queue)
            self.first.output_queue.clear()
        if self.second.output_queue:
            self.first.input_queue.extend(self.second.output_queue)
            self.second.output_queue.clear()

    def _runnable(self) -> Optional[Machine]:
        for machine in (self.first, self.second):
            if machine.state is State.WAITING_FOR_INPUT and machine.input_queue:
                return machine
        return None

    def run(self) -> int:
        """Run until neither machine can progress; returns the second machine's send count."""
        self.first.run()
        self.second.run()
        rounds = 0
        while True:
            self.relay()
            machine = self._runnable()
            if machine is None:
                break
            machine.run()
            rounds += 1
        logger.debug(
            "scheduler finished after %d rounds (deadlock=%s, states=%s/%s)",
            rounds,
            self.deadlocked,
            self.first.state.value,
            self.second.state.value,
        )
        return self.second.send_count


def recover_frequency(program: Sequence[Instruction], max_steps: Optional[int] = None) -> int:
    """Last value sent before the first receive with a nonzero register blocks."""
    machine = Machine(program, DUET, receive_policy=ReceivePolicy.NONZERO)
    machine.run(max_steps=max_steps)
    return machine.output_queue[-1] if machine.output_queue else 0


def count_sends_at_deadlock(program: Sequence[Instruction]) -> int:
    first = Machine(program, DUET)
    first[DuetRegister.P] = 0
    second = Machine(program, DUET)
    second[DuetRegister.P] = 1
    return Scheduler(first, second).run()


def solve(text: str, part: int) -> int:
    program = parse_program(text, DUET)
    if part == 1:
        return recover_frequency(program)
    if part == 2:
        return count_sends_at_deadlock(program)
    raise ValueError(f"unknown part {part}")


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("program", help="duet program file ('-' for stdin)")
    parser.add_argument("--part", type=int, choices=(1, 2), default=1)
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    program = load_program(args.program, DUET)
    if args.part == 1:
        print("recovered frequency:", recover_frequency(program))
    else:
        print("program 1 sends:", count_sends_at_deadlock(program))


if __name__ == "__main__":
    main()
