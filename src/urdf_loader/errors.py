"""Exception types raised while loading robot descriptions.

Load-level errors (malformed XML, failed macro expansion, invalid structure)
abort the current load. Mesh and joint errors are local to one resource and
never abort a load.
"""


class URDFLoaderError(Exception):
    """Base class for all urdf_loader errors."""


class MalformedXmlError(URDFLoaderError):
    """The description text is not well-formed XML."""


class MacroExpansionError(URDFLoaderError):
    """A XACRO document could not be expanded into plain URDF."""


class DescriptionError(URDFLoaderError, ValueError):
    """A well-formed document does not describe a valid kinematic tree."""


class UnsupportedMeshFormatError(URDFLoaderError):
    """No mesh parser is registered for a file extension."""


class UnknownJointError(URDFLoaderError, KeyError):
    """A joint name is not present in the current kinematic model."""
