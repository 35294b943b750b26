from .base import Base
from .attendance import AttendanceRecord

# for wildcard imports
__all__ = ["Base", "AttendanceRecord"]
