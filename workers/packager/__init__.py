"""
packager — build orchestration and packaging engine.

Turns a web address plus a build configuration into a platform-native
artifact by customizing a prebuilt skeleton archive, or by delegating
the build to a remote CI workflow.
"""

__version__ = "0.1.0"
PACKAGER_VERSION = "v1"
PACKAGE_NAME = "packager"
