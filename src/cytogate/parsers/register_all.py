"""
Register all available sample readers.

Explicit registration, called once at startup (or lazily by read_sample).
"""

import logging

logger = logging.getLogger(__name__)


def register_all_readers() -> None:
    """
    Register the built-in readers with the global registry.

    A reader that fails to import or register is logged and skipped; the
    remaining readers still load. Already registered readers are skipped.
    """
    from cytogate.parsers.registry import reader_registry

    # FCS 2.0/3.0/3.1
    try:
        from cytogate.parsers.fcs import FCSReader

        if reader_registry.get_reader("fcs") is None:
            reader_registry.register(FCSReader())
    except ImportError as e:
        logger.warning(f"FCS reader not available: {e}")
    except Exception as e:
        logger.error(f"Failed to register FCS reader: {e}", exc_info=True)

    # CSV/TSV event tables
    try:
        from cytogate.parsers.delimited import DelimitedReader

        if reader_registry.get_reader("delimited") is None:
            reader_registry.register(DelimitedReader())
    except Exception as e:
        logger.error(f"Failed to register delimited reader: {e}", exc_info=True)

    registered_count = len(reader_registry.list_readers())
    logger.debug(f"Reader registration complete: {registered_count} reader(s) available")
