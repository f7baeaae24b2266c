"""
Size ladder: the allowed instance sizes ordered by cost.

A ladder is a transient view built per decision from provider state. Indices
are only meaningful for the ladder they came from.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from vertiscale.errors import CannotScale, SizeNotFound


@dataclass(frozen=True)
class SizeInfo:
    """An instance size offered by the provider."""

    name: str
    hourly_cost: float
    architecture: str = ""
    location: str = ""


@dataclass(frozen=True)
class SizeLadder:
    """Allowed sizes in ascending cost order."""

    sizes: tuple[str, ...]

    @classmethod
    def build(cls, available: Iterable[SizeInfo], allow_list: Iterable[str]) -> "SizeLadder":
        """
        Build a ladder from provider sizes.

        Args:
            available: Sizes the provider currently offers for the instance
            allow_list: Size names the operator permits

        Returns:
            SizeLadder sorted by (hourly_cost, name)
        """
        allowed = set(allow_list)
        seen: dict[str, SizeInfo] = {}
        for info in available:
            if info.name in allowed and info.name not in seen:
                seen[info.name] = info
        ordered = sorted(seen.values(), key=lambda s: (s.hourly_cost, s.name))
        return cls(tuple(s.name for s in ordered))

    def __len__(self) -> int:
        return len(self.sizes)

    def __getitem__(self, index: int) -> str:
        return self.sizes[index]

    def __contains__(self, size: object) -> bool:
        return size in self.sizes

    def index_of(self, size: str) -> int:
        """Position of `size` in the ladder, raising SizeNotFound."""
        try:
            return self.sizes.index(size)
        except ValueError:
            raise SizeNotFound(size, self.sizes) from None

    def move(self, from_index: int, direction: int) -> tuple[int, str]:
        """
        Move `direction` steps from `from_index`, clamped to the ends.

        Returns:
            (new_index, new_size). new_index equals from_index when already
            at the boundary in that direction.
        """
        if not self.sizes:
            raise SizeNotFound("", self.sizes)
        if not 0 <= from_index < len(self.sizes):
            raise IndexError(f"index {from_index} outside ladder of {len(self.sizes)}")
        new_index = min(max(from_index + direction, 0), len(self.sizes) - 1)
        return new_index, self.sizes[new_index]

    def can_move(self, from_index: int, direction: int) -> bool:
        """True when a move in `direction` changes the size."""
        new_index, _ = self.move(from_index, direction)
        return new_index != from_index

    def step(self, from_index: int, direction: int) -> tuple[int, str]:
        """Like move(), but raises CannotScale when the clamp leaves the index unchanged."""
        new_index, new_size = self.move(from_index, direction)
        if new_index == from_index:
            raise CannotScale(self.sizes[from_index], direction, self.sizes)
        return new_index, new_size
