"""
portkey - secure SSH credential manager.
"""

__version__ = "1.0.0"
