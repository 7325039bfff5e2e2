"""
Cairn - structured long-term memory for AI assistants.

Package structure:
- core: Configuration, logging, errors, task queue
- memory: Entity store, scoring, compaction, markdown sync, backend facade
- cli: Command-line adapter
"""

__version__ = "0.1.0"
