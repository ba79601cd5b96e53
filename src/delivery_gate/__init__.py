"""Delivery Gate.

Decision layer for a project's continuous-delivery automation: gates a
package publish on whether the declared version is newer than the published
one, and classifies pull requests into category labels from their
conventional-commit style titles.
"""

__version__ = "0.1.0"
