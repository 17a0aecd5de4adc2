
import struct

import numpy as np

from errors import FormatError, TruncationError

INT32 = struct.Struct('<i')
FLOAT64 = struct.Struct('<d')


class BinaryWriter:
    """
    Little-endian primitive writer following the .NET BinaryWriter layout:
    int32, float64, one-byte bools and strings with a 7-bit encoded length prefix.
    """

    def __init__(self):
        self._chunks = []

    def write_int32(self, value):
        self._chunks.append(INT32.pack(int(value)))

    def write_double(self, value):
        self._chunks.append(FLOAT64.pack(float(value)))

    def write_bool(self, value):
        self._chunks.append(b'\x01' if value else b'\x00')

    def write_string(self, value):
        data = value.encode('utf-8')
        n = len(data)
        prefix = bytearray()
        while n >= 0x80:
            prefix.append((n & 0x7F) | 0x80)
            n >>= 7
        prefix.append(n)
        self._chunks.append(bytes(prefix) + data)

    def write_records(self, array):
        """Packed structured numpy array, written as-is."""
        self._chunks.append(np.ascontiguousarray(array).tobytes())

    def getvalue(self):
        return b''.join(self._chunks)


class BinaryReader:
    """Reader counterpart of BinaryWriter over an in-memory buffer."""

    def __init__(self, data):
        self._data = bytes(data)
        self.position = 0

    def remaining(self):
        return len(self._data) - self.position

    def _take(self, n, what):
        if self.remaining() < n:
            raise TruncationError(f"Unexpected end of data reading {what} at offset {self.position} "
                                  f"({self.remaining()} of {n} bytes left)")
        chunk = self._data[self.position:self.position + n]
        self.position += n
        return chunk

    def peek(self, n):
        return self._data[self.position:self.position + n]

    def peek_byte(self):
        if self.remaining() < 1:
            raise TruncationError(f"Unexpected end of data at offset {self.position}")
        return self._data[self.position]

    def skip(self, n):
        self._take(n, "padding")

    def read_int32(self):
        return INT32.unpack(self._take(4, "int32"))[0]

    def read_double(self):
        return FLOAT64.unpack(self._take(8, "float64"))[0]

    def read_bool(self):
        return self._take(1, "bool")[0] != 0

    def read_7bit_length(self):
        n, shift = 0, 0
        while True:
            b = self._take(1, "string length")[0]
            n |= (b & 0x7F) << shift
            if b < 0x80:
                return n
            shift += 7
            if shift > 28:
                raise FormatError(f"Malformed string length at offset {self.position}")

    def read_string(self):
        n = self.read_7bit_length()
        data = self._take(n, "string")
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError as e:
            raise FormatError(f"Invalid UTF-8 string at offset {self.position - n}: {e}")

    def read_records(self, dtype, count):
        """
        Reads up to `count` packed records. Returns (array, complete): when the
        data ends early only the whole records are returned and complete is False.
        """
        dtype = np.dtype(dtype)
        available = min(count, self.remaining() // dtype.itemsize)
        if available == 0:
            return np.empty(0, dtype=dtype), count == 0
        array = np.frombuffer(self._data, dtype=dtype, count=available, offset=self.position).copy()
        self.position += available * dtype.itemsize
        return array, available == count
