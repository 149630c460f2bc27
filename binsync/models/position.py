"""
Binlog position model for binsync
"""

import json
from dataclasses import dataclass
from functools import total_ordering
from typing import Any, Dict, Tuple

from ..exceptions import CheckpointError


def _file_sort_key(name: str) -> Tuple[str, int, str]:
    # the sequence suffix outgrows its zero padding after .999999
    base, _, suffix = name.rpartition('.')
    if base and suffix.isdecimal():
        return base, int(suffix), name
    return name, -1, name


@total_ordering
@dataclass(frozen=True)
class BinlogPosition:
    """Resumable location in the source binlog: file name plus byte offset"""
    name: str
    pos: int

    def __post_init__(self):
        if not self.name:
            raise ValueError("Binlog file name is required")
        if self.pos < 0:
            raise ValueError("Binlog offset must not be negative")

    def __lt__(self, other: 'BinlogPosition') -> bool:
        if not isinstance(other, BinlogPosition):
            return NotImplemented
        return (_file_sort_key(self.name), self.pos) < (_file_sort_key(other.name), other.pos)

    def __str__(self) -> str:
        return f"{self.name}:{self.pos}"

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'pos': self.pos}

    def to_bytes(self) -> bytes:
        """Serialize to the checkpoint file representation"""
        return json.dumps(self.to_dict()).encode('utf-8')

    @classmethod
    def from_bytes(cls, data: bytes) -> 'BinlogPosition':
        """
        Restore a position from its checkpoint file representation

        Raises:
            CheckpointError: if the data is not a valid serialized position
        """
        try:
            payload = json.loads(data.decode('utf-8'))
        except (UnicodeDecodeError, ValueError) as e:
            raise CheckpointError(f"Malformed checkpoint data: {e}")

        if not isinstance(payload, dict):
            raise CheckpointError("Checkpoint data must be a JSON object")

        name = payload.get('name')
        pos = payload.get('pos')
        if not isinstance(name, str) or not isinstance(pos, int) or isinstance(pos, bool):
            raise CheckpointError(f"Checkpoint data has invalid fields: {payload}")

        try:
            return cls(name=name, pos=pos)
        except ValueError as e:
            raise CheckpointError(f"Invalid checkpoint position: {e}")
