"""CPF (Cadastro de Pessoa Física) value object."""

from __future__ import annotations

from dataclasses import dataclass

from .errors import InvalidCPF

_LENGTH = 11
_REPEATED = frozenset(str(digit) * _LENGTH for digit in range(10))


def _check_digit(digits: str, first_weight: int) -> int:
    total = sum(int(digit) * weight for digit, weight in zip(digits, range(first_weight, 1, -1)))
    remainder = 11 - (total % 11)
    return 0 if remainder in (10, 11) else remainder


def is_valid_cpf(raw: str) -> bool:
    """Run the modulo-11 check-digit algorithm over an unformatted CPF string."""
    if len(raw) != _LENGTH or not (raw.isascii() and raw.isdigit()):
        return False
    if raw in _REPEATED:
        return False
    first = _check_digit(raw[:9], 10)
    second = _check_digit(raw[:10], 11)
    return first == int(raw[9]) and second == int(raw[10])


@dataclass(frozen=True, slots=True)
class CPF:
    """A CPF that is guaranteed valid.

    Validation happens in ``__post_init__`` so every construction path,
    including rows read back from Postgres, goes through the same check.
    """

    value: str

    def __post_init__(self) -> None:
        if not isinstance(self.value, str) or not is_valid_cpf(self.value):
            raise InvalidCPF(self.value)

    @classmethod
    def parse(cls, raw: str | None) -> "CPF":
        """Build a CPF from request input, tolerating surrounding whitespace."""
        if raw is None:
            raise InvalidCPF(raw)
        return cls(raw.strip())

    @property
    def formatted(self) -> str:
        """Display form ``XXX.XXX.XXX-XX``."""
        v = self.value
        return f"{v[0:3]}.{v[3:6]}.{v[6:9]}-{v[9:11]}"

    def __str__(self) -> str:
        return self.value
