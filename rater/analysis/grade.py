"""Letter grades for field support proportions."""

# (lower bound, grade), checked top-down
GRADE_THRESHOLDS = (
    (0.95, "A+"),
    (0.90, "A"),
    (0.80, "B"),
    (0.65, "C"),
    (0.40, "D"),
)


def grade(proportion: float) -> str:
    """Convert a support proportion (0.0-1.0) into a letter grade."""
    for bound, letter in GRADE_THRESHOLDS:
        if proportion >= bound:
            return letter
    return "F"
