"""
vaultkeeper - Declarative policy execution over a Markdown vault.

A policy is a YAML document that declares typed variables, vault-state
conditions and an ordered list of steps. Each step names one vault primitive
(add to a section, toggle a task, update frontmatter, ...). The engine runs
the steps in order, stops at the first failure, and in commit mode records
every change as a single git commit or rolls all of them back.

Example usage:
    $ vaultkeeper validate daily-log.yaml
    $ vaultkeeper preview daily-log --var entry="Reviewed PRs"
    $ vaultkeeper execute daily-log --var entry="Reviewed PRs" --commit
"""

__version__ = "0.1.0"
__author__ = "vaultkeeper Contributors"

__all__ = [
    "__version__",
    "__author__",
]
