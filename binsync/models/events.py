"""
Event models for binsync
"""

from dataclasses import dataclass, field
from typing import Any, List, Sequence, Tuple
from enum import Enum


class EventType(Enum):
    """Types of row change events"""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ColumnSet:
    """Ordered column names of a table and the positions of its primary key"""
    names: Tuple[str, ...]
    primary_key: Tuple[int, ...] = ()

    def __post_init__(self):
        if not self.names:
            raise ValueError("Column set requires at least one column")
        for index in self.primary_key:
            if not 0 <= index < len(self.names):
                raise ValueError(f"Primary key index {index} out of range")

    @classmethod
    def from_names(cls, names: Sequence[str], primary_key: Sequence[str] = ()) -> 'ColumnSet':
        names = tuple(names)
        missing = [name for name in primary_key if name not in names]
        if missing:
            raise ValueError(f"Primary key columns not in column set: {missing}")
        return cls(names=names, primary_key=tuple(names.index(name) for name in primary_key))

    @property
    def has_primary_key(self) -> bool:
        return bool(self.primary_key)

    @property
    def primary_key_names(self) -> List[str]:
        return [self.names[i] for i in self.primary_key]

    def key_values(self, row: Sequence[Any]) -> List[Any]:
        return [row[i] for i in self.primary_key]

    def __len__(self) -> int:
        return len(self.names)


@dataclass
class RowChangeEvent:
    """Base row change event, scoped to one source table"""
    schema: str
    table: str
    columns: ColumnSet
    event_type: EventType = field(init=False)

    def __post_init__(self):
        """Validate event after initialization"""
        if not self.schema:
            raise ValueError("Schema is required")
        if not self.table:
            raise ValueError("Table is required")

    def _check_row(self, row: Sequence[Any], label: str) -> None:
        if row is None:
            raise ValueError(f"{label} is required for {self.event_type.value.upper()} event")
        if len(row) != len(self.columns):
            raise ValueError(
                f"{label} has {len(row)} values but {self.schema}.{self.table} has {len(self.columns)} columns")


@dataclass
class InsertEvent(RowChangeEvent):
    """INSERT event"""
    row: List[Any] = None

    def __post_init__(self):
        super().__post_init__()
        self.event_type = EventType.INSERT
        self._check_row(self.row, "Row")


@dataclass
class UpdateEvent(RowChangeEvent):
    """UPDATE event"""
    before_row: List[Any] = None
    after_row: List[Any] = None

    def __post_init__(self):
        super().__post_init__()
        self.event_type = EventType.UPDATE
        self._check_row(self.before_row, "Before row")
        self._check_row(self.after_row, "After row")


@dataclass
class DeleteEvent(RowChangeEvent):
    """DELETE event"""
    row: List[Any] = None

    def __post_init__(self):
        super().__post_init__()
        self.event_type = EventType.DELETE
        self._check_row(self.row, "Row")
