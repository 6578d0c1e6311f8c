"""printfleet - converge installed printers with a declarative manifest."""

__version__ = "0.1.0"
