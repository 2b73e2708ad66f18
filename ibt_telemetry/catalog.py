"""Variable descriptors and the case-insensitive catalog built over them."""
from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
import logging
from typing import Dict, Iterable, Iterator, List, Optional, Tuple
import warnings

from .errors import DuplicateDescriptorWarning

logger = logging.getLogger(__name__)


class VarType(IntEnum):
    # 0-5 match the irsdk var types; the narrow integers follow them.
    CHAR = 0
    BOOL = 1
    INT32 = 2
    UINT32 = 3  # irsdk "bitfield"
    FLOAT32 = 4
    FLOAT64 = 5
    INT16 = 6
    UINT16 = 7
    INT8 = 8
    UINT8 = 9

    @property
    def struct_format(self) -> str:
        return VAR_TYPE_FORMATS[self][0]

    @property
    def width(self) -> int:
        return VAR_TYPE_FORMATS[self][1]


VAR_TYPE_FORMATS: Dict[VarType, Tuple[str, int]] = {
    VarType.CHAR: ("c", 1),
    VarType.BOOL: ("?", 1),
    VarType.INT32: ("i", 4),
    VarType.UINT32: ("I", 4),
    VarType.FLOAT32: ("f", 4),
    VarType.FLOAT64: ("d", 8),
    VarType.INT16: ("h", 2),
    VarType.UINT16: ("H", 2),
    VarType.INT8: ("b", 1),
    VarType.UINT8: ("B", 1),
}


@dataclass(frozen=True)
class VariableDescriptor:
    name: str
    var_type: VarType
    offset: int
    count: int = 1
    size: Optional[int] = None
    description: str = ""
    unit: str = ""
    count_as_time: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "var_type", VarType(self.var_type))
        if self.offset < 0:
            raise ValueError(f"Negative offset {self.offset} for {self.name}")
        if self.count < 1:
            raise ValueError(f"Count must be positive for {self.name} (got {self.count})")
        expected = self.count * self.var_type.width
        if self.size is None:
            object.__setattr__(self, "size", expected)
        elif self.size != expected:
            raise ValueError(
                f"Size {self.size} does not match {self.count} x {self.var_type.name} for {self.name}"
            )

    @property
    def end(self) -> int:
        return self.offset + self.size


class FieldCatalog:
    """Read-only index over the variable descriptors of one record layout.

    Lookups ignore case. When two descriptors collide case-insensitively the
    later one replaces the earlier one, and a ``DuplicateDescriptorWarning``
    is emitted instead of failing.
    """

    def __init__(self, descriptors: Iterable[VariableDescriptor]) -> None:
        by_name: Dict[str, VariableDescriptor] = {}
        declared: List[VariableDescriptor] = []
        for descriptor in descriptors:
            key = descriptor.name.lower()
            previous = by_name.get(key)
            if previous is not None:
                message = (
                    f"Duplicate variable {descriptor.name!r} "
                    f"(already declared as {previous.name!r}); keeping the last one"
                )
                logger.warning(message)
                warnings.warn(message, DuplicateDescriptorWarning, stacklevel=2)
            by_name[key] = descriptor
            declared.append(descriptor)
        self._by_name = by_name
        self._ordered: Tuple[VariableDescriptor, ...] = tuple(
            d for d in declared if by_name[d.name.lower()] is d
        )

    def lookup(self, name: str) -> Optional[VariableDescriptor]:
        return self._by_name.get(name.lower())

    def all(self) -> Tuple[VariableDescriptor, ...]:
        return self._ordered

    @property
    def names(self) -> List[str]:
        return [d.name for d in self._ordered]

    def __len__(self) -> int:
        return len(self._ordered)

    def __iter__(self) -> Iterator[VariableDescriptor]:
        return iter(self._ordered)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._by_name

    def __repr__(self) -> str:
        return f"FieldCatalog({len(self)} variables)"
