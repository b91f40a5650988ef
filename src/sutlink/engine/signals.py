"""Remote exit signal names"""

from typing import Optional

UNKNOWN_SIGNAL = -1

# Linux numbering, as reported by the systems under test
SIGNAL_NUMBERS = {
    "HUP": 1,
    "INT": 2,
    "QUIT": 3,
    "ILL": 4,
    "TRAP": 5,
    "ABRT": 6,
    "IOT": 6,
    "BUS": 7,
    "FPE": 8,
    "KILL": 9,
    "USR1": 10,
    "SEGV": 11,
    "USR2": 12,
    "PIPE": 13,
    "ALRM": 14,
    "TERM": 15,
    "STKFLT": 16,
    "CHLD": 17,
    "CONT": 18,
    "STOP": 19,
    "TSTP": 20,
    "TTIN": 21,
    "TTOU": 22,
    "URG": 23,
    "XCPU": 24,
    "XFSZ": 25,
    "VTALRM": 26,
    "PROF": 27,
    "WINCH": 28,
    "IO": 29,
    "PWR": 30,
    "SYS": 31,
}


class ExitSignal:
    """Signal the remote process died from

    number is None when the remote side reported a name missing from
    SIGNAL_NUMBERS.
    """

    def __init__(self, name: str, number: Optional[int], core_dumped: bool = False, message: str = ""):
        self.name = name
        self.number = number
        self.core_dumped = core_dumped
        self.message = message

    @classmethod
    def from_name(cls, name: str, core_dumped: bool = False, message: str = "") -> "ExitSignal":
        return cls(name, SIGNAL_NUMBERS.get(name), core_dumped, message)

    @property
    def known(self) -> bool:
        return self.number is not None

    @property
    def code(self) -> int:
        """Signal number, or UNKNOWN_SIGNAL"""
        return self.number if self.number is not None else UNKNOWN_SIGNAL

    def __repr__(self):
        return f"ExitSignal({self.name!r}, {self.number})"
