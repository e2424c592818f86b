from quickbase.client import QuickBase
from quickbase.config import VERSION, ClientConfig
from quickbase.errors import ConnectionLimitError, QuickBaseError, QuickBaseValidationError
from quickbase.throttle import Throttle

__version__ = VERSION

__all__ = [
    "QuickBase",
    "ClientConfig",
    "QuickBaseError",
    "QuickBaseValidationError",
    "ConnectionLimitError",
    "Throttle",
]
