"""luaref - Reference-counted handles on values inside an embedded runtime."""

from luaref.config import DEFAULT_STATE_CONFIG, StateConfig
from luaref.errors import (
    ConversionFailure,
    LuaError,
    ReleasedHandleError,
    RuntimeFault,
    StateClosedError,
    TypeMismatch,
)
from luaref.handles import BorrowedHandle, OwnedHandle, StackPop
from luaref.iterator import EXHAUSTED, Positioned, TableIterator
from luaref.ref import LuaRef
from luaref.registry import NOREF, REFNIL, Registry
from luaref.state import CompareOp, LuaState
from luaref.table import LuaTable
from luaref.table_item import TableItem
from luaref.types import HostFunction, LightUserdata, LuaFunction, LuaType, Userdata

__all__ = [
    # Main API
    "LuaState",
    "LuaRef",
    "TableItem",
    "TableIterator",
    "Positioned",
    "EXHAUSTED",
    # Configuration
    "StateConfig",
    "DEFAULT_STATE_CONFIG",
    # Runtime values
    "LuaType",
    "LuaTable",
    "LuaFunction",
    "HostFunction",
    "Userdata",
    "LightUserdata",
    "CompareOp",
    # Ownership
    "Registry",
    "REFNIL",
    "NOREF",
    "OwnedHandle",
    "BorrowedHandle",
    "StackPop",
    # Errors
    "LuaError",
    "TypeMismatch",
    "ConversionFailure",
    "RuntimeFault",
    "ReleasedHandleError",
    "StateClosedError",
]

__version__ = "0.1.0"
