"""Adapters for the external systems the gate observes and acts on.

These modules fetch versions (package registries, local manifests, GitHub)
and perform the side effects (publish commands, pull request labels), each
behind a Protocol with a Mock implementation for tests.
"""
