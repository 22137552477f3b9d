"""
CPDEX Constant-Product Exchange Package

Core imports are lazily loaded so that importing a submodule does not pull in
the whole engine. For direct module access, import from submodules:

    from cpdex.exchange import DexEngine, InMemoryLedger
    from cpdex.config import load_config
    from cpdex.exceptions import SlippageError
"""

__version__ = "0.1.0"


def __getattr__(name):
    """Lazy module loading."""
    if name == 'DexEngine':
        from .exchange.engine import DexEngine
        return DexEngine
    elif name == 'InMemoryLedger':
        from .exchange.ledger import InMemoryLedger
        return InMemoryLedger
    elif name == 'DexException':
        from .exceptions import DexException
        return DexException
    elif name == 'main':
        from .cli.dex import main
        return main
    raise AttributeError(f"module 'cpdex' has no attribute {name!r}")

__all__ = ['DexEngine', 'InMemoryLedger', 'DexException', 'main']
