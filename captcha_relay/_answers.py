"""Human reply parsing."""

import re

from captcha_relay._challenge import ChallengeKind, ParsedAnswer

_SEPARATORS = re.compile(r"[\s,]+")
_DIGITS = re.compile(r"\d+")


def _dedupe(numbers) -> list[int]:
    seen: set[int] = set()
    out = []
    for n in numbers:
        if n > 0 and n not in seen:
            seen.add(n)
            out.append(n)
    return out


def parse_grid_answer(reply: str) -> list[int]:
    """Parse ``"1 3 5"`` / ``"2,4,6"`` / ``"1, 3, 7"`` into cell numbers.

    Tokens that are not positive integers are dropped.  Duplicates keep
    their first position; the order is otherwise the one the human typed.
    """
    numbers = []
    for token in _SEPARATORS.split(reply.strip()):
        try:
            numbers.append(int(token))
        except ValueError:
            continue
    return _dedupe(numbers)


def extract_cells(text: str) -> list[int]:
    """Every digit run in free text (``"cells 2 and 5"`` -> ``[2, 5]``)."""
    return _dedupe(int(d) for d in _DIGITS.findall(text))


def parse_answer(reply: str, kind: ChallengeKind) -> ParsedAnswer:
    """Turn a raw reply into a ``ParsedAnswer`` for ``kind``.

    Text (and checkbox) replies are used verbatim after trimming.
    """
    if kind is ChallengeKind.GRID:
        return ParsedAnswer(cells=parse_grid_answer(reply))
    return ParsedAnswer(text=reply.strip())
