from typing import List

from registration.state import OTP_CODE_LENGTH


class OtpCodeInput:
    """
    Six single-digit slots for the verification code.

    Focus moves forward when a slot is filled and back on backspace into an
    empty slot. The value is always read positionally, so digits typed out of
    order still land where they were typed.
    """

    def __init__(self, length: int = OTP_CODE_LENGTH):
        self.length = length
        self._slots: List[str] = [""] * length

    @property
    def slots(self) -> List[str]:
        return list(self._slots)

    @property
    def value(self) -> str:
        return "".join(self._slots)

    @property
    def is_complete(self) -> bool:
        return all(self._slots)

    def _check_index(self, index: int) -> None:
        if not 0 <= index < self.length:
            raise IndexError(f"slot {index} out of range")

    def enter(self, index: int, char: str) -> int:
        """Set one slot and return the index that should hold focus next."""
        self._check_index(index)
        if char == "":
            self._slots[index] = ""
            return index
        if len(char) != 1 or char not in "0123456789":
            return index
        self._slots[index] = char
        return min(index + 1, self.length - 1)

    def backspace(self, index: int) -> int:
        self._check_index(index)
        if self._slots[index]:
            self._slots[index] = ""
            return index
        return max(index - 1, 0)

    def paste(self, text: str) -> int:
        digits = [c for c in text if c in "0123456789"][: self.length]
        for i, c in enumerate(digits):
            self._slots[i] = c
        return min(len(digits), self.length - 1)

    def clear(self) -> None:
        self._slots = [""] * self.length
