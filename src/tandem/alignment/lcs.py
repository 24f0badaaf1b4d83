from collections.abc import Sequence


def lcs_length(a: Sequence, b: Sequence) -> int:
    """Length of the longest common subsequence of a and b.

    This is the standard dynamic program, O(len(a) * len(b)) time, keeping only two rows of the table.
    It's meant for short sequences, like the tens of strobes in one trial.
    """
    if len(a) == 0 or len(b) == 0:
        return 0

    previous = [0] * (len(b) + 1)
    for a_item in a:
        current = [0] * (len(b) + 1)
        for j, b_item in enumerate(b):
            if a_item == b_item:
                current[j + 1] = previous[j] + 1
            else:
                current[j + 1] = max(previous[j + 1], current[j])
        previous = current
    return previous[-1]
