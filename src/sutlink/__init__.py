"""sutlink - remote test execution client"""

__version__ = "0.1.0"
