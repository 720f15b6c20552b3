"""Human-facing display identifiers such as ``HUM-alpha-001``.

A display id is a fixed-width rendering of a per-prefix counter: the counter is
split into a Greek letter bucket of 999 numbers each, so counter 1 is
``alpha-001``, 999 is ``alpha-999``, 1000 is ``beta-001`` and the last valid
counter (24 * 999) is ``omega-999``. The textual form is public and must stay
byte-stable.
"""

from __future__ import annotations

from dataclasses import dataclass

from app.crm.errors import (
    DisplayIdOutOfRange,
    InvalidDisplayIdFormat,
    InvalidDisplayIdLetter,
    InvalidDisplayIdNumber,
)

GREEK_ALPHABET: tuple[str, ...] = (
    "alpha",
    "beta",
    "gamma",
    "delta",
    "epsilon",
    "zeta",
    "eta",
    "theta",
    "iota",
    "kappa",
    "lambda",
    "mu",
    "nu",
    "xi",
    "omicron",
    "pi",
    "rho",
    "sigma",
    "tau",
    "upsilon",
    "phi",
    "chi",
    "psi",
    "omega",
)

DISPLAY_ID_PREFIXES: tuple[str, ...] = (
    "HUM",
    "ACC",
    "ACT",
    "OPP",
    "COL",
    "LES",
    "LED",
    "GEO",
    "PET",
    "EML",
    "FON",
    "GEX",
    "ROU",
    "BOR",
    "ROI",
    "REX",
    "ERR",
    "SOC",
    "FRY",
)

NUMBERS_PER_LETTER = 999
MAX_COUNTER = len(GREEK_ALPHABET) * NUMBERS_PER_LETTER

_LETTER_INDEX = {letter: index for index, letter in enumerate(GREEK_ALPHABET)}


@dataclass(frozen=True)
class ParsedDisplayId:
    prefix: str
    letter: str
    letter_index: int
    number: int
    counter: int


def format_display_id(prefix: str, counter: int) -> str:
    if counter < 1 or counter > MAX_COUNTER:
        raise DisplayIdOutOfRange(f"Counter {counter} out of range (1-{MAX_COUNTER})")

    letter_index = (counter - 1) // NUMBERS_PER_LETTER
    number = ((counter - 1) % NUMBERS_PER_LETTER) + 1
    return f"{prefix}-{GREEK_ALPHABET[letter_index]}-{number:03d}"


def parse_display_id(display_id: str) -> ParsedDisplayId:
    parts = display_id.split("-")
    if len(parts) != 3:
        raise InvalidDisplayIdFormat(f"Invalid display ID format: {display_id}")

    prefix, letter, number_text = parts
    letter_index = _LETTER_INDEX.get(letter)
    if letter_index is None:
        raise InvalidDisplayIdLetter(f"Invalid Greek letter in display ID: {letter}")

    if not (number_text.isascii() and number_text.isdigit()):
        raise InvalidDisplayIdNumber(f"Invalid number in display ID: {number_text}")
    number = int(number_text, 10)
    if number < 1 or number > NUMBERS_PER_LETTER:
        raise InvalidDisplayIdNumber(f"Invalid number in display ID: {number_text}")

    return ParsedDisplayId(
        prefix=prefix,
        letter=letter,
        letter_index=letter_index,
        number=number,
        counter=letter_index * NUMBERS_PER_LETTER + number,
    )
