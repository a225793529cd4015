"""Access checks, MongoDB filters, dependency graphs, scenario templates and resource operations for an xDS control plane."""

__version__ = "0.1.0"