"""XACRO expansion into plain URDF on top of the ``xacro`` package.

``xacro`` reads included files from disk, so every expansion runs in a
staging directory that mirrors the file server: the description is written
under ``<stage><working_path>`` and each file it includes is fetched through
the :class:`PathRewriter` and written at the matching path. Relative includes
then resolve against the directory of the including file, as they do on the
server.

``$(find pkg)`` and ``$(optenv ...)`` are substituted while staging, so the
ROS package index and the environment are never consulted.
"""

import ast
import logging
import os
import re
import tempfile

from typing import Callable, Dict, Optional

import xacro

from lxml import etree

from ..errors import MacroExpansionError
from .loading_manager import Fetcher
from .paths import REMOTE_SCHEMES, PathRewriter

console_logger = logging.getLogger(__name__)

XACRO_NAMESPACES = (
    "http://www.ros.org/wiki/xacro",
    "http://ros.org/wiki/xacro",
    "http://wiki.ros.org/xacro",
)

DESCRIPTION_FILENAME = "robot_description.urdf.xacro"
REMOTE_DIRECTORY = "_remote"
MAX_INCLUDED_FILES = 256

_EXPRESSION_PATTERN = re.compile(r"\$\{([^}]*)\}")
_COMMAND_PATTERN = re.compile(r"\$\(([^)]*)\)")

# Names and attribute prefixes that lead from an expression to interpreter internals
_FORBIDDEN_NAMES = frozenset(
    {"vars", "getattr", "setattr", "delattr", "globals", "locals", "eval", "exec", "compile"}
)
_FORBIDDEN_ATTRIBUTE_PREFIXES = ("_", "gi_", "cr_", "ag_", "f_", "co_", "tb_")


def is_xacro(text: str) -> bool:
    """Fast pre-check for XACRO content; not a schema check."""
    return "xacro" in text


def check_expression(expression: str) -> None:
    """Reject a ``${}`` expression that reaches past plain values.

    Arithmetic, comparisons, containers and calls of exposed functions pass.
    Private and frame attributes, the introspection builtins and strings
    containing ``__`` are refused.

    Raises:
        MacroExpansionError: If the expression is invalid or refused.
    """
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise MacroExpansionError(f"Invalid expression '${{{expression}}}': {e.msg}") from e
    for node in ast.walk(tree):
        if isinstance(node, ast.Attribute) and node.attr.startswith(_FORBIDDEN_ATTRIBUTE_PREFIXES):
            name = node.attr
        elif isinstance(node, ast.Name) and (node.id.startswith("_") or node.id in _FORBIDDEN_NAMES):
            name = node.id
        elif isinstance(node, ast.Constant) and isinstance(node.value, str) and "__" in node.value:
            name = node.value
        else:
            continue
        raise MacroExpansionError(f"'{name}' is not allowed in expression '${{{expression}}}'")


def _local_name(element: etree._Element) -> Optional[str]:
    """Local tag name of a xacro element, or None for other elements."""
    if not isinstance(element.tag, str):
        return None
    qname = etree.QName(element)
    if qname.namespace in XACRO_NAMESPACES:
        return qname.localname
    return None


class _Stage:
    """Local mirror of the file server for one expansion."""

    def __init__(self, directory: str, rewriter: PathRewriter):
        self.directory = directory
        self.rewriter = rewriter

    def local_path(self, reference: str) -> str:
        """Local path of an absolute reference or remote URL."""
        if reference.startswith(REMOTE_SCHEMES):
            scheme, rest = reference.split("://", 1)
            return os.path.join(self.directory, REMOTE_DIRECTORY, scheme, rest)
        return os.path.join(self.directory, reference.lstrip("/"))

    def contains(self, path: str) -> bool:
        return os.path.commonpath([self.directory, os.path.abspath(path)]) == self.directory

    def url(self, path: str) -> str:
        """URL a staged path is fetched from."""
        relative = os.path.relpath(os.path.abspath(path), self.directory).replace(os.sep, "/")
        remote_prefix = REMOTE_DIRECTORY + "/"
        if relative.startswith(remote_prefix):
            scheme, rest = relative[len(remote_prefix):].split("/", 1)
            return f"{scheme}://{rest}"
        return self.rewriter.resolve("/" + relative)


class MacroExpander:
    """Expands XACRO documents into URDF element trees.

    Args:
        rewriter: Resolves ``$(find ...)`` and include file names.
        fetcher: Returns the bytes of an include URL.
        args: Values for ``$(arg name)``, overriding ``xacro:arg`` defaults.
    """

    def __init__(
        self,
        rewriter: PathRewriter,
        fetcher: Optional[Fetcher] = None,
        args: Optional[Dict[str, str]] = None,
    ):
        self.rewriter = rewriter
        self.fetcher = fetcher
        self.args = dict(args or {})

    is_xacro = staticmethod(is_xacro)

    def expand(
        self,
        source_text: str,
        on_success: Callable[[etree._ElementTree], None],
        on_error: Callable[[str], None],
    ) -> None:
        """Expand ``source_text`` and report the outcome through callbacks.

        Expansion failures never propagate; they are passed to ``on_error``.
        """
        try:
            document = self.process(source_text)
        except MacroExpansionError as e:
            console_logger.error(f"XACRO expansion failed: {e}")
            on_error(str(e))
            return
        on_success(document)

    def process(self, source_text: str) -> etree._ElementTree:
        """Expand ``source_text`` into a plain URDF document.

        Raises:
            MacroExpansionError: If the template is malformed, refers to
                unknown macros, properties, arguments or files, or recurses
                without end.
        """
        with tempfile.TemporaryDirectory(prefix="urdf_loader_") as directory:
            stage = _Stage(os.path.abspath(directory), self.rewriter)
            description = stage.local_path(self.rewriter.working_path + "/" + DESCRIPTION_FILENAME)
            self._write(stage, description, source_text.encode("utf-8"), "<description>")

            # Each run fetches the first include xacro could not open, then starts over
            for _ in range(MAX_INCLUDED_FILES):
                try:
                    document = xacro.process_file(description, mappings=dict(self.args))
                    break
                except Exception as e:
                    missing = self._missing_file(stage, e)
                    if missing is None:
                        raise MacroExpansionError(f"XACRO processing failed: {e}") from e
                    self._include(stage, missing)
            else:
                raise MacroExpansionError(f"More than {MAX_INCLUDED_FILES} included files")

            data = document.toxml(encoding="utf-8")

        root = etree.fromstring(data)
        etree.cleanup_namespaces(root)
        return etree.ElementTree(root)

    @staticmethod
    def _missing_file(stage: _Stage, error: Exception) -> Optional[str]:
        """Staged path xacro failed to open, if that is what ``error`` reports."""
        cause = getattr(error, "exc", None)
        if not isinstance(cause, FileNotFoundError) or not cause.filename:
            return None
        path = os.path.abspath(cause.filename)
        return path if stage.contains(path) else None

    def _include(self, stage: _Stage, path: str) -> None:
        url = stage.url(path)
        if os.path.exists(path):
            raise MacroExpansionError(f"Cannot open included file {url}")
        if self.fetcher is None:
            raise MacroExpansionError(f"Cannot include {url}: no fetcher configured")
        console_logger.debug(f"Including {url}")
        try:
            data = self.fetcher(url)
        except Exception as e:
            raise MacroExpansionError(f"Failed to include {os.path.basename(path)} from {url}: {e}") from e
        if path.endswith((".yaml", ".yml")):
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as f:
                f.write(data)
        else:
            self._write(stage, path, data, url)

    def _write(self, stage: _Stage, path: str, data: bytes, origin: str) -> None:
        """Substitute, check and stage one XACRO document."""
        try:
            root = etree.fromstring(data)
        except etree.XMLSyntaxError as e:
            raise MacroExpansionError(f"Malformed XACRO in {origin}: {e}") from e

        for element in root.iter():
            if element.tail:
                element.tail = self._substitute(element.tail)
            if not isinstance(element.tag, str):
                continue
            if element.text:
                element.text = self._substitute(element.text)
            for key, value in element.attrib.items():
                element.set(key, self._substitute(value))
            if _local_name(element) == "include" and element.get("filename"):
                element.set("filename", self._include_filename(stage, element.get("filename")))

        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(etree.tostring(root, xml_declaration=True, encoding="utf-8"))

    def _include_filename(self, stage: _Stage, filename: str) -> str:
        # Relative and computed names are left to xacro
        if "$" in filename:
            return filename
        reference = self.rewriter.to_reference(filename)
        if reference.startswith("/") or reference.startswith(REMOTE_SCHEMES):
            return stage.local_path(reference)
        return filename

    def _substitute(self, text: str) -> str:
        if "$" not in text:
            return text
        for expression in _EXPRESSION_PATTERN.findall(text):
            check_expression(expression)
        return _COMMAND_PATTERN.sub(self._resolve_command, text)

    def _resolve_command(self, match: "re.Match[str]") -> str:
        words = match.group(1).split()
        if not words:
            raise MacroExpansionError("Empty substitution $()")
        name, rest = words[0], words[1:]
        if name == "find" and len(rest) == 1:
            return self.rewriter.find_package(rest[0])
        if name == "optenv" and rest:
            return self.rewriter.optenv(rest[0], " ".join(rest[1:]))
        if name == "arg" and len(rest) == 1:
            return match.group(0)
        raise MacroExpansionError(f"Unsupported substitution {match.group(0)}")
