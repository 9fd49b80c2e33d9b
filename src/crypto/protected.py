import hmac
import os


class ProtectedValue:
    """A secret held XORed with a random pad until explicitly revealed.

    Neither ``repr`` nor ``str`` ever render the plaintext, so protected
    values are safe to pass through logging and generic formatting.
    """

    __slots__ = ("_data", "_pad")
    __hash__ = None

    def __init__(self, data: bytes, pad: bytes) -> None:
        if len(data) != len(pad):
            raise ValueError("pad length must match data length")
        self._data = bytearray(data)
        self._pad = bytearray(pad)

    @classmethod
    def from_bytes(cls, plaintext: bytes) -> "ProtectedValue":
        pad = os.urandom(len(plaintext))
        return cls(bytes(a ^ b for a, b in zip(plaintext, pad)), pad)

    @classmethod
    def from_string(cls, plaintext: str) -> "ProtectedValue":
        return cls.from_bytes(plaintext.encode("utf-8"))

    def copy(self) -> "ProtectedValue":
        return ProtectedValue(bytes(self._data), bytes(self._pad))

    def reveal_bytes(self) -> bytes:
        return bytes(a ^ b for a, b in zip(self._data, self._pad))

    def reveal(self) -> str:
        return self.reveal_bytes().decode("utf-8")

    def wipe(self) -> None:
        for buf in (self._data, self._pad):
            for i in range(len(buf)):
                buf[i] = 0
        self._data = bytearray()
        self._pad = bytearray()

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProtectedValue):
            return NotImplemented
        return hmac.compare_digest(self.reveal_bytes(), other.reveal_bytes())

    def __repr__(self) -> str:
        return "ProtectedValue(***)"

    __str__ = __repr__
