"""Smart card login configuration files, card event handling and mapper chains."""

__version__ = "0.6.13"
__all__ = ["__version__"]