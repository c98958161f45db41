from .errors import *
from .ops import *
from .real import *
from .variable import *
from .evaluator import *
from .gradient import *
from .target import *
from .density import *
from .fitting import *

__all__ = ["Real", "Kind", "Constant", "Infinity", "NegInfinity", "Unary", "Line", "LogLine", "Pow", "Compare", "Lookup", "If",
           "INFINITY", "NEG_INFINITY", "ZERO", "ONE", "const", "unary", "compare", "where", "lookup", "eq", "total", "logsumexp",
           "post_order", "dispatch_table", "UnaryOp", "Variable", "Parameter", "Column", "Evaluator", "n_rows", "evaluate_rows",
           "Gradient", "Target", "TargetGroup", "build_target_group", "find_parameters", "find_columns", "DensityFunction",
           "fit", "FitResult", "RealGraphError", "UnboundVariable", "DomainError", "MalformedGraph", "MissingDerivative"]
__version__ = "0.1.0"
