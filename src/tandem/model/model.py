from importlib import import_module
from typing import Self


class DynamicImport():
    """Utility for creating class instances from a dynamically imported module and class.

    tandem uses this to load configured event log readers and diagnostic plotters.
    """

    @classmethod
    def from_dynamic_import(cls, import_spec: str, **kwargs) -> Self:
        """Create a class instance from a dynamically imported module and class.

        The given import_spec should be of the form "package.subpackage.module.ClassName".
        The "package.subpackage.module" will be imported dynamically via importlib.
        Then "ClassName" from the imported module will be invoked as a class constructor.

        This should be equivalent to the static statement "from package.subpackage.module import ClassName",
        followed by instance = ClassName(**kwargs)

        Returns a new instance of the imported class.
        """
        last_dot = import_spec.rfind(".")
        module_spec = import_spec[0:last_dot]
        imported_module = import_module(module_spec, package=None)

        class_name = import_spec[last_dot+1:]
        imported_class = getattr(imported_module, class_name)
        instance = imported_class(**kwargs)
        return instance
