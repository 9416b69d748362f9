# service/__init__.py
# Re-export der Submodule, damit "from service import db" etc. funktioniert.
from . import config, db

__all__ = [
    "config",
    "db",
]
