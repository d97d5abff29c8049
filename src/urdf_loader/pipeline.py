"""Loading pipeline: description text in, displayed kinematic model out.

A load runs through::

    EMPTY -> VALIDATING -> [EXPANDING ->] PARSING -> READY

and ends in FAILED when the text is not well-formed XML, the XACRO expansion
fails or the document is not a valid robot. A failed load leaves the
previously displayed model in place. Mesh geometry keeps arriving after
READY, one completion per :meth:`LoadingPipeline.process_pending` step.
"""

import logging
import math

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

from lxml import etree

from .config import LoaderConfig
from .core import KinematicModel
from .errors import DescriptionError
from .io.loading_manager import Fetcher, HttpFetcher, LoadingManager
from .io.meshes import MeshResolver
from .io.paths import PathRewriter
from .io.urdf_parser import DescriptionParser
from .io.xacro import MacroExpander, is_xacro
from .transforms import se3

console_logger = logging.getLogger(__name__)

XML_ERROR_PREFIX = "XML syntax error:\n"


class LoadState(Enum):
    EMPTY = "empty"
    VALIDATING = "validating"
    EXPANDING = "expanding"
    PARSING = "parsing"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class DescriptionSource:
    """Raw description text and its dialect."""

    text: str
    is_xacro: bool

    @classmethod
    def from_text(cls, text: str) -> "DescriptionSource":
        return cls(text=text, is_xacro=is_xacro(text))


class LoadingPipeline:
    """Loads URDF and XACRO descriptions into a displayed kinematic model.

    Args:
        config: Loader settings. Defaults to :class:`LoaderConfig` defaults.
        fetcher: Returns the bytes of a URL. Defaults to an HTTP fetcher.
        on_render: Called with the displayed model whenever it needs a redraw.
        on_error: Called with the message of every failed load.
        on_load: Called when every queued mesh has finished loading.
    """

    def __init__(
        self,
        config: Optional[LoaderConfig] = None,
        fetcher: Optional[Fetcher] = None,
        on_render: Optional[Callable[[Optional[KinematicModel]], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        on_load: Optional[Callable[[], None]] = None,
    ):
        self.config = config or LoaderConfig()
        self.on_render = on_render
        self.on_error = on_error
        self.on_load = on_load

        self.rewriter = PathRewriter(self.config.base_url, self.config.working_path)
        self.manager = LoadingManager(
            fetcher or HttpFetcher(self.config.request_timeout_s),
            on_load=self._on_all_loaded,
        )
        self.expander = MacroExpander(self.rewriter, self.manager.fetch, self.config.xacro_args)
        self.parser = DescriptionParser(
            self.rewriter,
            MeshResolver(self.manager, self.config.default_rgba),
            on_geometry_attached=self._on_geometry_attached,
            default_rgba=self.config.default_rgba,
        )

        self._state = LoadState.EMPTY
        self._robot_model: Optional[KinematicModel] = None
        self._source: Optional[DescriptionSource] = None
        self._error_message = ""

    @property
    def state(self) -> LoadState:
        return self._state

    @property
    def robot_model(self) -> Optional[KinematicModel]:
        return self._robot_model

    @property
    def is_ready(self) -> bool:
        """True while a successfully loaded model is displayed."""
        return self._robot_model is not None

    @property
    def error_message(self) -> str:
        return self._error_message

    @property
    def source(self) -> Optional[DescriptionSource]:
        return self._source

    @property
    def working_path(self) -> str:
        return self.rewriter.working_path

    def set_working_path(self, working_path: str = "") -> None:
        self.rewriter.set_working_path(working_path)

    def set_robot(self, text: str = "") -> LoadState:
        """Load a description, or reload the previous one if ``text`` is empty.

        Load errors never propagate; they end the load in FAILED and are
        reported through :attr:`error_message` and ``on_error``.

        Returns:
            The state the load ended in.
        """
        if not text and self._source is not None:
            text = self._source.text
        self._source = DescriptionSource.from_text(text)

        self._state = LoadState.VALIDATING
        if self.has_xml_error(text):
            self._fail(self._error_message)
            return self._state

        if self._source.is_xacro:
            self._state = LoadState.EXPANDING
            self.expander.expand(text, on_success=self._parse, on_error=self._fail)
        else:
            self._parse(text)
        return self._state

    def has_xml_error(self, text: str) -> bool:
        """Check well-formedness and replace the error channel accordingly."""
        try:
            etree.fromstring(text.encode("utf-8"))
        except etree.XMLSyntaxError as e:
            self._error_message = XML_ERROR_PREFIX + str(e)
            return True
        self._error_message = ""
        return False

    def _parse(self, document: Union[str, etree._ElementTree]) -> None:
        self._state = LoadState.PARSING
        try:
            model = self.parser.parse(document)
        except DescriptionError as e:
            self._fail(f"Invalid robot description: {e}")
            return

        if not model.links:
            console_logger.info("Robot description contains no links")
            model.supersede()
            self._replace_model(None)
            self._state = LoadState.EMPTY
            return

        # Descriptions are Z-up, the viewer is Y-up
        model.root_transform = se3.rotation_x(-math.pi / 2)
        self._replace_model(model)
        self._state = LoadState.READY
        console_logger.info(f"Robot '{model.name}' ready")
        self.request_render()

    def _fail(self, message: str) -> None:
        self._state = LoadState.FAILED
        self._error_message = message
        console_logger.error(f"Failed to load robot description: {message}")
        if self.on_error is not None:
            self.on_error(message)

    def _replace_model(self, model: Optional[KinematicModel]) -> None:
        if self._robot_model is not None and self._robot_model is not model:
            self._robot_model.supersede()
        self._robot_model = model

    def dispose(self) -> None:
        """Remove the displayed model; pending mesh loads for it are dropped."""
        self._replace_model(None)
        self._source = None
        self._error_message = ""
        self._state = LoadState.EMPTY

    def process_pending(self, max_steps: Optional[int] = None) -> int:
        """Run queued mesh load steps. See :meth:`LoadingManager.process_pending`."""
        return self.manager.process_pending(max_steps)

    def request_render(self) -> None:
        if self.on_render is not None:
            self.on_render(self._robot_model)

    def _on_geometry_attached(self, model: KinematicModel, link_name: str) -> None:
        if model is self._robot_model:
            console_logger.debug(f"Mesh attached to link '{link_name}'")
            self.request_render()

    def _on_all_loaded(self) -> None:
        self.request_render()
        if self.on_load is not None:
            self.on_load()
