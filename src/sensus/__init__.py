"""sensus: classify anonymous submissions by feeling and pair them up."""

__version__ = "0.1.0"
