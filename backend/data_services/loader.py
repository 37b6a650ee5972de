"""
Data Services — Component Loader & Context Builder
====================================================

What:  Finds service, middleware and injectable classes on disk, imports
       them and builds one instance of each with its declared dependencies.
How:   1. locate():  glob patterns + importable module names → file paths
       2. load():    import each file, pick its component classes, build a
                     context dict from `cls.dependencies`, call `cls(context)`
       3. Registries: injectables / middlewares / services, keyed by class name
Who:   Driven by ApiServer during construction.
When:  Once per server, before the OpenAPI document and routes are built.

Component contract:
    class InsertData:
        dependencies = ("DataStore",)

        def __init__(self, context):
            self._store = context["DataStore"]
            self._log = context["log"]("INSERT-SERVICE")

    Every context also holds `api_server` (the owning ApiServer) and `log`
    (a component logger factory). Dependency names are matched
    case-insensitively against injectables first, then services, and only
    against components that were loaded earlier.

Load order:
    provided objects → injectables → middlewares (+ STANDARD) → services
"""

import glob
import importlib
import importlib.util
import inspect
import logging
import os
import sys
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, Iterable, List, Optional, Sequence

from data_services.exceptions import ComponentLoadError, FailedToLoadInjectableError

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).resolve().parent

# ── Default Discovery Conventions ─────────────────────────────────────────
DEFAULT_SERVICE_LOCATIONS = [str(PACKAGE_DIR / "services" / "**" / "*_service.py")]
DEFAULT_MIDDLEWARE_LOCATIONS = [str(PACKAGE_DIR / "middleware" / "**" / "*_middleware.py")]
DEFAULT_INJECTABLE_LOCATIONS = [str(PACKAGE_DIR / "injectables" / "**" / "*_injectable.py")]

# Prefix for modules imported straight from a file path
_FILE_MODULE_PREFIX = "data_services_components"


def locate(
    glob_patterns: Optional[Iterable[str]] = None,
    module_names: Optional[Iterable[str]] = None,
) -> List[str]:
    """
    Resolve glob patterns and module names to component file paths.

    Returns:
        Paths relative to the working directory, in discovery order, with
        duplicates removed (the first occurrence wins).

    Raises:
        ComponentLoadError: a module name cannot be found on the import path
    """
    found: List[str] = []

    for pattern in glob_patterns or ():
        found.extend(sorted(glob.glob(pattern, recursive=True)))

    for name in module_names or ():
        try:
            spec = importlib.util.find_spec(name)
        except (ImportError, ValueError) as e:
            raise ComponentLoadError(f"Unable to locate module '{name}': {e}", path=name)
        if spec is None or not spec.origin or not os.path.isfile(spec.origin):
            raise ComponentLoadError(f"Unable to locate module '{name}'", path=name)
        found.append(spec.origin)

    unique: Dict[str, str] = {}
    for path in found:
        absolute = os.path.abspath(path)
        if absolute not in unique:
            unique[absolute] = os.path.relpath(absolute)
    return list(unique.values())


def _dotted_name(file_path: Path) -> Optional[str]:
    """Dotted module name for a file that sits inside a package under sys.path."""
    for entry in sys.path:
        root = Path(entry or os.getcwd()).resolve()
        try:
            relative = file_path.relative_to(root)
        except ValueError:
            continue
        parts = list(relative.with_suffix("").parts)
        if not parts or not all(part.isidentifier() for part in parts):
            continue
        packages_ok = all(
            (root.joinpath(*parts[:i]) / "__init__.py").is_file()
            for i in range(1, len(parts))
        )
        if packages_ok:
            return ".".join(parts)
    return None


def import_component_module(path: str) -> ModuleType:
    """
    Import the module stored at `path`.

    Resolution:
        1. A module already in sys.modules with the same file is reused
        2. A file inside a package under sys.path is imported by dotted name
        3. Anything else is imported by location under a synthetic name
    """
    file_path = Path(path).resolve()

    for module in list(sys.modules.values()):
        module_file = getattr(module, "__file__", None)
        if module_file and Path(module_file).resolve() == file_path:
            return module

    dotted = _dotted_name(file_path)
    if dotted:
        return importlib.import_module(dotted)

    module_name = f"{_FILE_MODULE_PREFIX}_{file_path.stem}_{abs(hash(str(file_path))):x}"
    spec = importlib.util.spec_from_file_location(module_name, str(file_path))
    if spec is None or spec.loader is None:
        raise ComponentLoadError(f"Cannot import component file {path}", path=path)

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        # Never leave a half-imported module behind
        sys.modules.pop(module_name, None)
        raise
    return module


def component_classes(module: ModuleType) -> List[type]:
    """Classes listed in `__all__`, else the public classes the module defines."""
    exported = getattr(module, "__all__", None)
    if exported is not None:
        return [
            getattr(module, name)
            for name in exported
            if inspect.isclass(getattr(module, name, None))
        ]
    return [
        obj
        for name, obj in vars(module).items()
        if inspect.isclass(obj)
        and obj.__module__ == module.__name__
        and not name.startswith("_")
    ]


class ComponentLoader:
    """
    Holds the three registries and builds components into them.

    Args:
        base_context: Entries present in every component context
                      (`api_server` and `log`).
    """

    def __init__(self, base_context: Dict[str, Any]):
        self.base_context = dict(base_context)
        self.injectables: Dict[str, Any] = {}
        self.middlewares: Dict[str, Any] = {}
        self.services: Dict[str, Any] = {}

    def provide(self, name: str, obj: Any) -> None:
        """Register an already-constructed object as an injectable."""
        self.injectables[name] = obj

    def build_context(self, names: Sequence[str], path: Optional[str] = None) -> Dict[str, Any]:
        """
        Build the context for a component that depends on `names`.

        Raises:
            FailedToLoadInjectableError: a name is neither a loaded injectable
                                         nor a loaded service
        """
        context = dict(self.base_context)
        for name in names:
            if name in context:
                continue
            context[name] = self._lookup(name, path)
        return context

    def _lookup(self, name: str, path: Optional[str]) -> Any:
        wanted = name.lower()
        for registry in (self.injectables, self.services):
            for key, value in registry.items():
                if key.lower() == wanted:
                    return value
        raise FailedToLoadInjectableError(name, path=path)

    def load(self, paths: Iterable[str], registry: Dict[str, Any]) -> List[str]:
        """
        Import every file in `paths` and instantiate its component classes
        into `registry`.

        Returns:
            Class names registered, in load order.
        Raises:
            Whatever failed while importing or constructing; the offending
            path is logged first.
        """
        loaded: List[str] = []
        for path in paths:
            try:
                module = import_component_module(path)
                classes = component_classes(module)
                if not classes:
                    raise ComponentLoadError(
                        f"{path} does not define a component class", path=path
                    )
                for cls in classes:
                    dependencies = getattr(cls, "dependencies", ()) or ()
                    context = self.build_context(list(dependencies), path=path)
                    registry[cls.__name__] = cls(context)
                    loaded.append(cls.__name__)
                    logger.debug("Loaded %s from %s", cls.__name__, path)
            except Exception:
                logger.error("Failed to load component from %s", path, exc_info=True)
                raise
        return loaded
