"""Rewriting of resource references into fetchable URLs.

Descriptions reference meshes and includes relative to the directory they were
opened from, or through ``package://`` URIs. Both are served by the hosting
file server under ``<base_url>files<working_path>``.
"""

import logging
import threading

console_logger = logging.getLogger(__name__)

PACKAGE_SCHEME = "package://"
FILE_SCHEME = "file://"
REMOTE_SCHEMES = ("http://", "https://")


class PathRewriter:
    """Maps resource references to URLs rooted at a working directory.

    The working path is the only mutable state. It is written through
    :meth:`set_working_path` under a lock and read by every resolution.
    """

    def __init__(self, base_url: str = "/", working_path: str = ""):
        self.base_url = base_url
        self._lock = threading.Lock()
        self._working_path = ""
        self.set_working_path(working_path)

    @staticmethod
    def normalize_working_path(working_path: str = "") -> str:
        """Normalize to ``/this/format/path``.

        A leading ``/`` is added when missing and one trailing ``/`` is
        removed, so both ``""`` and ``"/"`` become ``""``.
        """
        if not working_path.startswith("/"):
            working_path = "/" + working_path
        if working_path.endswith("/"):
            working_path = working_path[:-1]
        return working_path

    def set_working_path(self, working_path: str = "") -> None:
        working_path = self.normalize_working_path(working_path)
        with self._lock:
            self._working_path = working_path
        console_logger.debug(f"Modify URL with prefix {working_path!r}")

    @property
    def working_path(self) -> str:
        return self._working_path

    @property
    def files_root(self) -> str:
        """URL of the working directory on the file server."""
        return self.base_url + "files" + self._working_path

    def to_reference(self, filename: str) -> str:
        """Turn a URDF ``filename`` attribute into a path reference.

        ``package://name/rest`` becomes ``/name/rest``: packages live directly
        under the working directory.
        """
        if filename.startswith(PACKAGE_SCHEME):
            return "/" + filename[len(PACKAGE_SCHEME):]
        if filename.startswith(FILE_SCHEME):
            return filename[len(FILE_SCHEME):]
        return filename

    def resolve(self, reference: str) -> str:
        """Resolve a reference to the URL it is fetched from.

        A reference that already starts with the working path was rooted
        before (for example by ``$(find ...)``) and only gets the serving
        prefix. Anything else is placed under the working path first.
        """
        if reference.startswith(REMOTE_SCHEMES):
            return reference

        reference = self.to_reference(reference)
        working_path = self._working_path
        rooted = reference.startswith(working_path)
        if not reference.startswith("/"):
            reference = "/" + reference
        if rooted:
            url = self.base_url + "files" + reference
        else:
            url = self.base_url + "files" + working_path + reference
        console_logger.debug(f"Resolved {reference!r} -> {url}")
        return url

    def find_package(self, package_name: str) -> str:
        """Path of a package for ``$(find package_name)``.

        There is no package registry or search path.
        """
        return self._working_path + "/" + package_name

    @staticmethod
    def optenv(name: str, default: str = "") -> str:
        """Value for ``$(optenv name default)``.

        The environment is never consulted; the default is always returned.
        """
        return default
