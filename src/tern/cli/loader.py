"""
tern.cli.loader — Find the StackBuilder a command operates on.

TARGET forms:

  myapp.stack:stack          — module attribute
  ./deploy/stack.py:stack    — file attribute
  myapp.stack                — attribute defaults to "stack"

The attribute is a StackBuilder or a zero-argument callable returning one.
"""

from __future__ import annotations

import importlib
import importlib.util
import sys
from pathlib import Path

from tern.core.builder import DEFAULT_STACK_NAME, StackBuilder

DEFAULT_ATTRIBUTE = "stack"


class LoadError(Exception):
    """Stack target could not be loaded."""
    pass


def load_stack(target: str, default_name: str | None = None) -> StackBuilder:
    """Load the StackBuilder named by target.

    A builder that kept the default stack name is renamed to default_name
    when one is given.
    """
    module_ref, _, attr = target.partition(":")
    attr = attr or DEFAULT_ATTRIBUTE
    if not module_ref:
        raise LoadError(f"Invalid stack target: '{target}'")

    if module_ref.endswith(".py"):
        module = _load_file(Path(module_ref))
    else:
        try:
            module = importlib.import_module(module_ref)
        except ImportError as e:
            raise LoadError(f"Cannot import '{module_ref}': {e}") from e

    if not hasattr(module, attr):
        raise LoadError(f"'{module_ref}' has no attribute '{attr}'")
    obj = getattr(module, attr)

    if callable(obj) and not isinstance(obj, StackBuilder):
        obj = obj()
    if not isinstance(obj, StackBuilder):
        raise LoadError(
            f"'{target}' must be a StackBuilder or return one, "
            f"got {type(obj).__name__}"
        )
    if default_name and obj.name == DEFAULT_STACK_NAME:
        obj.name = default_name
    return obj


def _load_file(path: Path):
    if not path.exists():
        raise LoadError(f"File not found: {path}")
    name = f"_tern_stack_{path.stem}"
    spec = importlib.util.spec_from_file_location(name, path)
    if spec is None or spec.loader is None:
        raise LoadError(f"Cannot load {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[name] = module
    # Sibling imports of the stack file
    parent = str(path.resolve().parent)
    if parent not in sys.path:
        sys.path.insert(0, parent)
    spec.loader.exec_module(module)
    return module
