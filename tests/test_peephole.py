# tests/test_peephole.py
"""
Tests for register unification and the divisor-loop rewrite.
"""

import pytest

from peephole import (
    REPLACEMENT,
    TEMPLATE,
    RegisterMapping,
    TemplateNotFound,
    extract_register_mapping,
    optimize,
)
from register_machine import (
    COPROCESSOR,
    ConditionalJump,
    CoprocessorRegister as R,
    Machine,
    State,
    jump_target,
    parse_program,
)
from tests.conftest import DIVISOR_LOOP, coprocessor_source, rename_registers


PERMUTATIONS = [
    dict(zip("abcdefgh", "abcdefgh")),
    dict(zip("abcdefgh", "hgfedcba")),
    dict(zip("abcdefgh", "cabhgdfe")),
    dict(zip("abcdefgh", "adbcfegh")),
]


def run(program, h=0, max_steps=None):
    machine = Machine(program, COPROCESSOR)
    machine[R.H] = h
    machine.run(max_steps=max_steps)
    return machine


class TestRegisterMapping:

    def test_insert_is_idempotent(self):
        mapping = RegisterMapping()
        assert mapping.try_insert(R.A, R.B)
        assert mapping.try_insert(R.A, R.B)
        assert mapping.reverse_reg(R.B) is R.A

    def test_conflicting_forward_rejected(self):
        mapping = RegisterMapping()
        assert mapping.try_insert(R.A, R.B)
        assert not mapping.try_insert(R.A, R.C)
        assert mapping.reverse_reg(R.C) is None

    def test_conflicting_reverse_rejected(self):
        mapping = RegisterMapping()
        assert mapping.try_insert(R.A, R.B)
        assert not mapping.try_insert(R.D, R.B)
        assert mapping.reverse_reg(R.B) is R.A
        assert mapping.forward[list(R).index(R.D)] is None

    def test_identity_pairs(self):
        mapping = RegisterMapping()
        assert mapping.try_insert(R.E, R.E)
        assert not mapping.try_insert(R.E, R.F)
        assert mapping.try_insert(R.F, R.G)

    def test_unmapped_template_register(self):
        with pytest.raises(KeyError):
            RegisterMapping().reverse_operand(R.H)


class TestMatch:

    def test_template_matches_itself(self):
        mapping = extract_register_mapping(TEMPLATE)
        assert mapping is not None
        for reg in (R.B, R.D, R.E, R.F, R.G):
            assert mapping.reverse_reg(reg) is reg

    @pytest.mark.parametrize("letters", PERMUTATIONS)
    def test_renamed_window(self, letters):
        window = parse_program(rename_registers(DIVISOR_LOOP, letters), COPROCESSOR)
        mapping = extract_register_mapping(window)
        assert mapping is not None
        for template_letter in "bdefg":
            assert mapping.reverse_reg(R(template_letter)) is R(letters[template_letter])

    def test_register_conflict(self):
        text = DIVISOR_LOOP.replace("set g d\n", "set g b\n", 1)
        assert extract_register_mapping(parse_program(text, COPROCESSOR)) is None

    def test_operand_kind_must_agree(self):
        text = DIVISOR_LOOP.replace("set e 2\n", "set e a\n", 1)
        assert extract_register_mapping(parse_program(text, COPROCESSOR)) is None

    def test_opcode_must_agree(self):
        text = DIVISOR_LOOP.replace("mul g e\n", "sub g e\n", 1)
        assert extract_register_mapping(parse_program(text, COPROCESSOR)) is None

    def test_literal_values_not_compared(self):
        text = DIVISOR_LOOP.replace("set e 2\n", "set e 3\n", 1)
        assert extract_register_mapping(parse_program(text, COPROCESSOR)) is not None

    def test_short_window(self):
        assert extract_register_mapping(TEMPLATE[:-1]) is None


class TestOptimize:

    def test_template_alone(self):
        assert optimize(TEMPLATE) == REPLACEMENT

    def test_not_found(self):
        with pytest.raises(TemplateNotFound):
            optimize(parse_program("set a 1\nsub a 1\n", COPROCESSOR))

    def test_not_found_after_break(self):
        text = DIVISOR_LOOP.replace("sub d -1\n", "sub h -1\n", 1)
        with pytest.raises(TemplateNotFound):
            optimize(parse_program(text, COPROCESSOR))

    def test_input_untouched(self):
        program = parse_program(coprocessor_source(), COPROCESSOR)
        before = tuple(program)
        optimized = optimize(program)
        assert program == before
        assert len(optimized) == len(program) - len(TEMPLATE) + len(REPLACEMENT)
        assert optimized[:10] == program[:10]
        assert optimized[19:-1] == program[24:-1]
        assert optimized[-1] == ConditionalJump(1, -18)

    def test_replacement_uses_candidate_registers(self):
        letters = PERMUTATIONS[2]
        program = parse_program(rename_registers(coprocessor_source(), letters), COPROCESSOR)
        optimized = optimize(program)
        assert str(optimized[10]) == f"set {letters['g']} {letters['b']}"
        assert str(optimized[11]) == f"mod {letters['g']} {letters['d']}"
        assert str(optimized[13]) == f"set {letters['f']} 0"
        assert str(optimized[14]) == "jnz 1 4"

    def test_jump_targets_preserved(self):
        text = "set h 0\njnz a 16\n" + DIVISOR_LOOP + "sub h -1\nset a 0\njnz 1 -18\njnz 1 -3\n"
        program = parse_program(text, COPROCESSOR)
        optimized = optimize(program)
        delta = len(REPLACEMENT) - len(TEMPLATE)

        # (old index, new index) for every jump outside the rewritten window
        moved = [(1, 1), (18, 18 + delta), (19, 19 + delta)]
        for old, new in moved:
            old_target = jump_target(old, program[old])
            new_target = jump_target(new, optimized[new])
            if old_target >= 16:
                assert new_target == old_target + delta
            else:
                assert new_target == old_target
            assert optimized[new_target] == program[old_target]

        assert optimized[1] == ConditionalJump(R.A, 11)
        assert optimized[13] == ConditionalJump(1, -13)
        assert optimized[14] == ConditionalJump(1, -3)

    @pytest.mark.parametrize("letters", PERMUTATIONS)
    @pytest.mark.parametrize("seed", [3, 4, 5, 9, 12, 17, 25, 29])
    @pytest.mark.parametrize("h", [0, 5, -3])
    def test_equivalent_results(self, letters, seed, h):
        text = rename_registers(coprocessor_source(seed=seed), letters)
        program = parse_program(text, COPROCESSOR)
        slow = Machine(program, COPROCESSOR)
        fast = Machine(optimize(program), COPROCESSOR)
        for machine in (slow, fast):
            machine[R(letters["h"])] = h
            machine.run()
            assert machine.halted

        # d and e are the loop's own counters and end up differently
        internal = {letters["d"], letters["e"]}
        slow_regs = {k: v for k, v in slow.registers.as_dict().items() if k not in internal}
        fast_regs = {k: v for k, v in fast.registers.as_dict().items() if k not in internal}
        assert slow_regs == fast_regs
        assert fast.steps <= slow.steps

    def test_step_budget(self):
        program = parse_program(coprocessor_source(seed=1000), COPROCESSOR)
        slow = run(program, max_steps=100_000)
        assert slow.state is State.PENDING

        fast = run(optimize(program), max_steps=100)
        assert fast.halted
        assert fast.steps < 50
        assert fast[R.H] == 1
