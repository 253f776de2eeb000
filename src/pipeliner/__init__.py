from .executor import Executor
from .parser import load_workflow, parse_workflow, resolve_profile
from .workspace import Workspace
from .model import Workflow

__version__ = "0.1.0"

__all__ = ["Executor", "load_workflow", "parse_workflow", "resolve_profile", "Workspace", "Workflow"]
