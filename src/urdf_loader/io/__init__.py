"""I/O utilities for loading robot descriptions and their resources.

This module provides URL rewriting, resource fetching, XACRO expansion, URDF
parsing and mesh loading.
"""

from .loading_manager import HttpFetcher, LoadingManager
from .meshes import MeshFormat, MeshLoadState, MeshResolver, RenderNode
from .paths import PathRewriter
from .urdf_parser import DescriptionParser
from .xacro import MacroExpander, is_xacro

__all__ = [
    "DescriptionParser",
    "HttpFetcher",
    "LoadingManager",
    "MacroExpander",
    "MeshFormat",
    "MeshLoadState",
    "MeshResolver",
    "PathRewriter",
    "RenderNode",
    "is_xacro",
]
