"""
Rules file: metric rules and scheduled actions.

The file is TOML:

    [[rules]]
    query = 'sum(minecraft_players_online) > 15'
    action = 1

    [[schedule]]
    cron = "0 3 * * *"
    action = -1
    if_size = "> 0"

Rules are evaluated in file order. Schedule entries fire independently.
"""

import operator
import tomllib
from collections.abc import Callable
from pathlib import Path

from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from vertiscale.errors import ConfigurationError

_OPERATORS: dict[str, Callable[[int, int], bool]] = {
    "<": operator.lt,
    ">": operator.gt,
    "<=": operator.le,
    ">=": operator.ge,
    "=": operator.eq,
    "==": operator.eq,
}


class SizeGuard(BaseModel):
    """Comparison of the current ladder index against a constant."""

    model_config = ConfigDict(frozen=True)

    op: str
    operand: int

    @field_validator("op")
    @classmethod
    def validate_op(cls, v: str) -> str:
        if v not in _OPERATORS:
            raise ValueError(f"unknown size guard operator {v!r}")
        return v

    @classmethod
    def parse(cls, expression: str) -> "SizeGuard":
        """
        Parse "<op> <operand>", e.g. "> 0" or "== 2".

        Raises:
            ValueError: Unknown operator or non-integer operand
        """
        op, sep, operand = expression.strip().partition(" ")
        if not sep:
            raise ValueError(f"size guard must be '<op> <index>', got {expression!r}")
        if op not in _OPERATORS:
            raise ValueError(f"unknown size guard operator {op!r}")
        try:
            value = int(operand.strip())
        except ValueError:
            raise ValueError(f"size guard operand must be an integer, got {operand!r}") from None
        return cls(op=op, operand=value)

    def matches(self, current_index: int) -> bool:
        """Evaluate the guard against the current ladder index."""
        return _OPERATORS[self.op](current_index, self.operand)

    def __str__(self) -> str:
        return f"{self.op} {self.operand}"


class ScaleRule(BaseModel):
    """A metric rule: when `query` returns a non-empty vector, move by `action`."""

    model_config = ConfigDict(frozen=True)

    query: str = Field(min_length=1)
    action: int

    @field_validator("action")
    @classmethod
    def validate_action(cls, v: int) -> int:
        if v == 0:
            raise ValueError("action must be non-zero (+1 grows, -1 shrinks)")
        return v


class ScaleSchedule(BaseModel):
    """A time-based action fired by a cron expression."""

    model_config = ConfigDict(frozen=True)

    cron: str
    action: int
    if_size: SizeGuard | None = None

    @field_validator("cron")
    @classmethod
    def validate_cron(cls, v: str) -> str:
        CronTrigger.from_crontab(v)
        return v

    @field_validator("action")
    @classmethod
    def validate_action(cls, v: int) -> int:
        if v == 0:
            raise ValueError("action must be non-zero (+1 grows, -1 shrinks)")
        return v

    @field_validator("if_size", mode="before")
    @classmethod
    def parse_if_size(cls, v: object) -> object:
        if isinstance(v, str):
            return SizeGuard.parse(v) if v.strip() else None
        return v

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary."""
        return {
            "cron": self.cron,
            "action": self.action,
            "if_size": str(self.if_size) if self.if_size else None,
        }


class RuleSet(BaseModel):
    """Contents of a rules file."""

    rules: list[ScaleRule] = Field(default_factory=list)
    schedule: list[ScaleSchedule] = Field(default_factory=list)


def load_rules(path: Path | str) -> RuleSet:
    """
    Load and validate a rules file.

    Args:
        path: Path to the TOML rules file

    Returns:
        Validated RuleSet

    Raises:
        ConfigurationError: Missing file, invalid TOML or invalid entries
    """
    path = Path(path)
    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except OSError as e:
        raise ConfigurationError(f"failed to read rules file {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"invalid TOML in rules file {path}: {e}") from e

    try:
        return RuleSet.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"invalid rules file {path}",
            details={"errors": str(e)},
        ) from e
