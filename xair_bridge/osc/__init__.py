from .protocol import TypedArg, float_arg, infer_arg, int_arg, str_arg
from .transport import MessageHandler, OscTransport

__all__ = [
    "OscTransport",
    "MessageHandler",
    "TypedArg",
    "int_arg",
    "float_arg",
    "str_arg",
    "infer_arg",
]
