# finpilot/outputs/__init__.py
from importlib import import_module


def get_output(name, config):
    """Instantiate the writer registered under ``name`` in config['output_modules']."""
    modules = config.get('output_modules') or {}
    if name not in modules:
        raise ValueError(f"No output module registered for {name!r}")
    module_name, cls_name = modules[name].rsplit('.', 1)
    mod = import_module(module_name)
    return getattr(mod, cls_name)(config)
