"""Pipeline: configuration -> dispatch -> program load -> adapter -> render."""

import logging
from typing import Optional

from .adapters import AnalysisSettings
from .config import Configuration, EnvironmentSettings
from .dispatch import select_graph_kind
from .program import load_program
from .render import render_collection

logger = logging.getLogger(__name__)


def visualize_graph(config: Configuration,
                    settings: Optional[AnalysisSettings] = None,
                    environment: Optional[EnvironmentSettings] = None):
    """Build the requested graphs for ``config.input_file`` and render them."""
    settings = settings or AnalysisSettings()
    environment = environment or EnvironmentSettings()

    kind = select_graph_kind(config.graph_type)
    program = load_program(
        config.input_file,
        options=settings.options,
        clang_args=environment.clang_args,
        libclang_path=environment.libclang_path,
    )

    collection = kind.build(program, settings)
    logger.info("Built %d %s graph(s)", len(collection), config.graph_type.value)

    render_collection(
        collection,
        kind.convert,
        config.output_format,
        destination=config.output,
        as_directory=config.output_is_directory,
    )
