"""
rdsconnect - IAM-authenticated connections to Aurora/RDS MySQL clusters
"""

__version__ = "0.1.0"

from .core import RdsConnect
from .errors import ConnectError

__all__ = ["RdsConnect", "ConnectError"]
