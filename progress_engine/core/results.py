"""Outcomes reported by progress writes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from progress_engine.utils.exceptions import ProgressEngineError


@dataclass(frozen=True, slots=True)
class WriteOk:
    """The record is stored at ``version``."""

    version: int
    duplicate: bool = False


@dataclass(frozen=True, slots=True)
class WriteConflict:
    """The stored row moved on to ``current_version``."""

    current_version: int


@dataclass(frozen=True, slots=True)
class WriteFailed:
    """The record was not written."""

    error: ProgressEngineError


WriteResult = Union[WriteOk, WriteConflict, WriteFailed]
