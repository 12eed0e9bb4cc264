# tests/conftest.py
"""
Shared coprocessor program builders.
"""

DIVISOR_LOOP = """\
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
"""


def coprocessor_source(seed=57, scale=100, offset=-100000, span=-17000, stride=-17):
    """Coprocessor program counting composites in [b, c] with step -stride.

    The defaults match the usual puzzle input shape.
    """
    return (
        f"set b {seed}\n"
        "set c b\n"
        "jnz a 2\n"
        "jnz 1 5\n"
        f"mul b {scale}\n"
        f"sub b {offset}\n"
        "set c b\n"
        f"sub c {span}\n"
        "set f 1\n"
        "set d 2\n"
        + DIVISOR_LOOP
        + "jnz f 2\n"
        "sub h -1\n"
        "set g b\n"
        "sub g c\n"
        "jnz g 2\n"
        "jnz 1 3\n"
        f"sub b {stride}\n"
        "jnz 1 -23\n"
    )


def rename_registers(text, letters):
    """Rewrite register operands through ``letters`` (a dict of old -> new)."""
    out = []
    for line in text.splitlines():
        opcode, *args = line.split()
        args = [letters.get(arg, arg) for arg in args]
        out.append(" ".join([opcode] + args))
    return "\n".join(out) + "\n"
