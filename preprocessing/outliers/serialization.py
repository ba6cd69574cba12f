"""
Binary Serialization Helpers

Models and accumulator state are stored as numpy .npz archives (loaded
with allow_pickle=False). Group keys are encoded as tagged JSON strings so
that ints, floats, strings, booleans, timestamps and missing values
survive a round trip with their type.
"""

from typing import Any, Dict, List, Sequence
import io
import json
import numpy as np
import pandas as pd

from .grouping import GroupKey
from .counters import MemberCounter


FORMAT_VERSION = 1


def _encode_value(value: Any) -> list:
    if value is None:
        return ['n', None]
    if isinstance(value, (bool, np.bool_)):
        return ['b', bool(value)]
    if isinstance(value, (int, np.integer)):
        return ['i', int(value)]
    if isinstance(value, (float, np.floating)):
        return ['f', float(value)]
    if isinstance(value, str):
        return ['s', value]
    if isinstance(value, pd.Timestamp):
        return ['t', value.isoformat()]
    # anything else is kept by its string form
    return ['s', str(value)]


def _decode_value(tagged: list) -> Any:
    tag, value = tagged
    if tag == 'n':
        return None
    if tag == 'b':
        return bool(value)
    if tag == 'i':
        return int(value)
    if tag == 'f':
        return float(value)
    if tag == 't':
        return pd.Timestamp(value)
    if tag == 's':
        return value
    raise ValueError(f"Unknown group value tag '{tag}'")


def encode_key(key: Sequence[Any]) -> str:
    """Encode a group key as a JSON string."""
    return json.dumps([_encode_value(v) for v in key])


def decode_key(encoded: str) -> GroupKey:
    """Decode a group key produced by encode_key()."""
    return GroupKey(_decode_value(v) for v in json.loads(encoded))


def string_array(values: Sequence[str]) -> np.ndarray:
    return np.array([str(v) for v in values], dtype=str)


def pack_arrays(arrays: Dict[str, np.ndarray]) -> bytes:
    """Write named arrays into an in-memory .npz archive."""
    buffer = io.BytesIO()
    np.savez_compressed(buffer, **arrays)
    return buffer.getvalue()


def unpack_arrays(blob: bytes) -> Dict[str, np.ndarray]:
    """
    Read named arrays from an .npz archive.

    Raises:
        ValueError: If the blob is not a valid archive
    """
    try:
        with np.load(io.BytesIO(blob), allow_pickle=False) as archive:
            return {name: archive[name] for name in archive.files}
    except (OSError, EOFError, ValueError) as e:
        raise ValueError(f"Invalid serialized data: {e}") from e


def bytes_to_array(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.uint8)


def array_to_bytes(array: np.ndarray) -> bytes:
    return np.asarray(array, dtype=np.uint8).tobytes()


def counter_to_arrays(counter: MemberCounter) -> Dict[str, np.ndarray]:
    """
    Flatten a counter into parallel arrays.

    The first-seen key order is kept through the 'order' array.
    """
    columns: List[str] = []
    keys: List[str] = []
    counts: List[int] = []
    for (column, key), count in counter.items():
        columns.append(column)
        keys.append(encode_key(key))
        counts.append(count)

    return {
        'columns': string_array(columns),
        'keys': string_array(keys),
        'counts': np.array(counts, dtype=np.int64),
        'order': string_array([encode_key(k) for k in counter.group_keys()]),
    }


def counter_from_arrays(arrays: Dict[str, np.ndarray]) -> MemberCounter:
    counter = MemberCounter()
    for encoded in arrays['order']:
        counter.register_key(decode_key(str(encoded)))
    for column, encoded, count in zip(arrays['columns'], arrays['keys'], arrays['counts']):
        counter.increment(str(column), decode_key(str(encoded)), int(count))
    return counter


def counter_to_bytes(counter: MemberCounter) -> bytes:
    return pack_arrays(counter_to_arrays(counter))


def counter_from_bytes(blob: bytes) -> MemberCounter:
    return counter_from_arrays(unpack_arrays(blob))
