"""
Prime-field elements for the NIST curves (moduli up to 384 bits).

`FieldElement` is an immutable wrapper around a canonical integer in [0, P).
Each concrete field is a subclass that fixes the class attribute ``P``:

    class Fp256(FieldElement):
        P = 2**256 - 2**224 + 2**192 + 2**96 - 1

    a = Fp256(5)
    b = a.inv() * 3

Mixing elements of different fields raises TypeError. Python integers are
arbitrary precision and platform independent, so every node computes the
same result.

Not constant-time; used for verification over public data only.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Optional, Union

MAX_MODULUS_BITS = 384


@dataclass(frozen=True)
class FieldElement:
    n: int

    P: ClassVar[int] = 0
    BYTE_LEN: ClassVar[int] = 0

    def __init_subclass__(cls, **kwargs) -> None:
        super().__init_subclass__(**kwargs)
        p = cls.__dict__.get("P")
        if p is None:
            return
        if p < 3 or p % 2 == 0:
            raise TypeError(f"{cls.__name__}: modulus must be an odd prime")
        if p.bit_length() > MAX_MODULUS_BITS:
            raise TypeError(f"{cls.__name__}: modulus wider than {MAX_MODULUS_BITS} bits")
        cls.BYTE_LEN = (p.bit_length() + 7) // 8

    def __post_init__(self) -> None:
        if not self.P:
            raise TypeError("FieldElement is abstract; subclass it with a modulus P")
        object.__setattr__(self, "n", int(self.n) % self.P)

    # --- Constructors -----------------------------------------------------

    @classmethod
    def from_bytes(cls, b: bytes) -> "FieldElement":
        """Parse a fixed-width big-endian encoding; the value must be < P."""
        if len(b) != cls.BYTE_LEN:
            raise ValueError(f"{cls.__name__}: expected {cls.BYTE_LEN} bytes, got {len(b)}")
        v = int.from_bytes(b, "big")
        if v >= cls.P:
            raise ValueError(f"{cls.__name__}: value not reduced")
        return cls(v)

    @classmethod
    def zero(cls) -> "FieldElement":
        return cls(0)

    @classmethod
    def one(cls) -> "FieldElement":
        return cls(1)

    # --- Serialization ----------------------------------------------------

    def to_bytes(self) -> bytes:
        return self.n.to_bytes(self.BYTE_LEN, "big")

    def __int__(self) -> int:
        return self.n

    def __bool__(self) -> bool:
        return self.n != 0

    def __repr__(self) -> str:
        return f"{type(self).__name__}(0x{self.to_bytes().hex()})"

    # --- Arithmetic -------------------------------------------------------

    def _coerce(self, other: Union[int, "FieldElement"]) -> int:
        if isinstance(other, FieldElement):
            if type(other) is not type(self):
                raise TypeError(
                    f"cannot mix {type(self).__name__} and {type(other).__name__}"
                )
            return other.n
        if isinstance(other, int):
            return other
        return NotImplemented  # type: ignore[return-value]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, FieldElement):
            return type(other) is type(self) and other.n == self.n
        if isinstance(other, int):
            return self.n == other % self.P
        return NotImplemented

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.n))

    def __neg__(self) -> "FieldElement":
        return type(self)(-self.n)

    def __add__(self, other):
        o = self._coerce(other)
        if o is NotImplemented:
            return o
        return type(self)(self.n + o)

    __radd__ = __add__

    def __sub__(self, other):
        o = self._coerce(other)
        if o is NotImplemented:
            return o
        return type(self)(self.n - o)

    def __rsub__(self, other):
        o = self._coerce(other)
        if o is NotImplemented:
            return o
        return type(self)(o - self.n)

    def __mul__(self, other):
        o = self._coerce(other)
        if o is NotImplemented:
            return o
        return type(self)(self.n * o)

    __rmul__ = __mul__

    def __truediv__(self, other):
        o = self._coerce(other)
        if o is NotImplemented:
            return o
        return self * type(self)(o).inv()

    def __pow__(self, e: int) -> "FieldElement":
        if e < 0:
            return type(self)(pow(self.n, -e, self.P)).inv()
        return type(self)(pow(self.n, e, self.P))

    def square(self) -> "FieldElement":
        return type(self)(self.n * self.n)

    def inv(self) -> "FieldElement":
        """Multiplicative inverse by Fermat's little theorem: a^(P-2)."""
        if self.n == 0:
            raise ZeroDivisionError(f"{type(self).__name__}: inverse of zero")
        return type(self)(pow(self.n, self.P - 2, self.P))

    def is_square(self) -> bool:
        if self.n == 0:
            return True
        return pow(self.n, (self.P - 1) // 2, self.P) == 1

    def sqrt(self) -> Optional["FieldElement"]:
        """Square root for P ≡ 3 (mod 4); None for non-residues."""
        if self.P % 4 != 3:
            raise NotImplementedError(f"{type(self).__name__}: sqrt needs P ≡ 3 mod 4")
        r = type(self)(pow(self.n, (self.P + 1) // 4, self.P))
        return r if r.square() == self else None

    @property
    def is_odd(self) -> bool:
        return bool(self.n & 1)


__all__ = ["FieldElement", "MAX_MODULUS_BITS"]
