"""
dehaze_covariance.py - Per-pixel symmetric 3x3 matrices for the guided filter.

Each entry is a whole field (numpy array or torch tensor of shape H x W) or a
plain float, so one Symmetric3 holds the local covariance matrix of every pixel
at once. Only *, - and + are used on the entries; division goes through the
backend so that a zero determinant propagates inf/NaN instead of raising.

        | a00 a01 a02 |
    M = | a01 a11 a12 |
        | a02 a12 a22 |
"""

from dataclasses import dataclass
from typing import Any, Tuple


@dataclass(frozen=True)
class Symmetric3:
    a00: Any
    a01: Any
    a02: Any
    a11: Any
    a12: Any
    a22: Any

    def cofactors(self) -> "Symmetric3":
        """Cofactor matrix; symmetric because M is."""
        return Symmetric3(
            a00=self.a11 * self.a22 - self.a12 * self.a12,
            a01=self.a12 * self.a02 - self.a01 * self.a22,
            a02=self.a01 * self.a12 - self.a11 * self.a02,
            a11=self.a00 * self.a22 - self.a02 * self.a02,
            a12=self.a02 * self.a01 - self.a00 * self.a12,
            a22=self.a00 * self.a11 - self.a01 * self.a01,
        )

    def determinant(self, cofactors=None):
        """First covariance row dotted with the first cofactor row."""
        if cofactors is None:
            cofactors = self.cofactors()
        return self.a00 * cofactors.a00 + self.a01 * cofactors.a01 + self.a02 * cofactors.a02

    def inverse(self, divide) -> "Symmetric3":
        """
        Analytic inverse: cofactors / determinant.

        `divide` is the backend's element-wise division. Near-singular pixels
        are kept non-singular by the eps added to the diagonal upstream; if the
        determinant is still zero the result holds inf/NaN for the caller to
        patch.
        """
        cof = self.cofactors()
        det = self.determinant(cof)
        return Symmetric3(
            a00=divide(cof.a00, det),
            a01=divide(cof.a01, det),
            a02=divide(cof.a02, det),
            a11=divide(cof.a11, det),
            a12=divide(cof.a12, det),
            a22=divide(cof.a22, det),
        )

    def dot(self, v0, v1, v2) -> Tuple[Any, Any, Any]:
        """M @ (v0, v1, v2)."""
        return (
            self.a00 * v0 + self.a01 * v1 + self.a02 * v2,
            self.a01 * v0 + self.a11 * v1 + self.a12 * v2,
            self.a02 * v0 + self.a12 * v1 + self.a22 * v2,
        )

    def add_diagonal(self, value) -> "Symmetric3":
        return Symmetric3(
            a00=self.a00 + value, a01=self.a01, a02=self.a02,
            a11=self.a11 + value, a12=self.a12,
            a22=self.a22 + value,
        )
