"""yammy - verified package installation.

Packages are fetched into quarantine, fingerprinted, checked against the
hash declared in yammy.yaml, and only then promoted into the package tree.
"""

__version__ = "1.0.0"
