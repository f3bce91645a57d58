from typing import List, Sequence

import numpy as np

_ENCODE_TABLE = bytearray([4] * 256)
for _char, _code in zip(b"ACGTacgt", [0, 1, 2, 3] * 2):
    _ENCODE_TABLE[_char] = _code

_DECODER = np.array(["A", "C", "G", "T", "N"], dtype="U1")
_COMPLEMENT = str.maketrans("ACGTNacgtn", "TGCANtgcan")


class RaggedData:
    """
    Class for storing ragged (variable-length) arrays.

    Uses a flattened representation (data + offsets) so that a whole sequence
    set can be handed to a JIT kernel in one call without padding.
    """

    def __init__(self, data: np.ndarray, offsets: np.ndarray):
        self.data = data
        self.offsets = offsets

    def get_length(self, i: int) -> int:
        """Return the length of the i-th sequence."""
        return int(self.offsets[i + 1] - self.offsets[i])

    def get_slice(self, i: int) -> np.ndarray:
        """Return a slice of data for the i-th sequence (view)."""
        return self.data[self.offsets[i] : self.offsets[i + 1]]

    def total_elements(self) -> int:
        """Return the total number of elements across all sequences."""
        return self.data.size

    @property
    def num_sequences(self) -> int:
        """Return the number of sequences."""
        return self.offsets.size - 1


def ragged_from_list(data_list: List[np.ndarray], dtype=None) -> RaggedData:
    """Create RaggedData from a list of numpy arrays."""
    if len(data_list) == 0:
        return RaggedData(np.empty(0, dtype=dtype if dtype else np.int8), np.zeros(1, dtype=np.int64))

    if dtype is None:
        dtype = data_list[0].dtype

    n = len(data_list)
    lengths = np.array([len(item) for item in data_list], dtype=np.int64)

    offsets = np.zeros(n + 1, dtype=np.int64)
    offsets[1:] = np.cumsum(lengths)

    data = np.empty(offsets[-1], dtype=dtype)
    for i in range(n):
        data[offsets[i] : offsets[i + 1]] = data_list[i]

    return RaggedData(data, offsets)


def encode_sequence(seq: str) -> np.ndarray:
    """Encode a DNA string as int8 codes (A=0, C=1, G=2, T=3, anything else 4)."""
    raw = seq.encode("ascii", errors="replace")
    return np.frombuffer(raw.translate(_ENCODE_TABLE), dtype=np.int8).copy()


def decode_sequence(seq_int: np.ndarray) -> str:
    """Convert integer-encoded sequence to ACGT string."""
    safe_seq = np.clip(seq_int, 0, 4)
    return "".join(_DECODER[safe_seq])


def encode_sequences(sequences: Sequence[str]) -> RaggedData:
    """Encode a list of DNA strings into one RaggedData block."""
    return ragged_from_list([encode_sequence(seq) for seq in sequences], dtype=np.int8)


def revcom(seq: str) -> str:
    """Return the reverse complement of a nucleotide string."""
    return seq.translate(_COMPLEMENT)[::-1]
