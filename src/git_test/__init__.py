"""
git-test: run tests against git commits and remember the results.

Results are stored as git notes attached to the *tree* of each tested commit,
so a verdict stays valid across rebases, merges and cherry-picks that
reproduce the same content.

Importing the package has no side effects: no config loading, no logging
setup.
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
