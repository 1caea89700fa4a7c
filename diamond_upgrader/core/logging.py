"""
Logging configuration for the Diamond Upgrader.
Provides structured logging for deployment and diamond cut operations.
"""

import logging
import sys
from typing import Any, Dict, List, Mapping, Optional

import structlog
from structlog.stdlib import LoggerFactory

from diamond_upgrader.core.config import settings


def setup_logging() -> None:
    """
    Configure structured logging for the upgrader.
    Sets up different log formats for development and production environments.
    """

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _get_processor(),
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.LOG_LEVEL.upper()),
    )

    # Set specific logger levels
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _get_processor():
    """
    Get the appropriate processor based on environment.

    Returns:
        Processor function for structlog
    """
    if settings.ENVIRONMENT == "production" or settings.LOG_FORMAT == "json":
        return structlog.processors.JSONRenderer()
    else:
        return structlog.dev.ConsoleRenderer(colors=True)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        structlog.stdlib.BoundLogger: Configured logger instance
    """
    return structlog.get_logger(name)


# Specialized logging functions for upgrade operations

def log_blockchain_transaction(
    tx_hash: str,
    chain_id: int,
    contract_address: str = None,
    method: str = None,
    **kwargs
) -> None:
    """
    Log blockchain transaction details.

    Args:
        tx_hash: Transaction hash
        chain_id: Blockchain chain ID
        contract_address: Smart contract address
        method: Contract method called
        **kwargs: Additional transaction context
    """
    logger = get_logger("blockchain.transaction")
    logger.info(
        "Blockchain transaction",
        tx_hash=tx_hash,
        chain_id=chain_id,
        contract_address=contract_address,
        method=method,
        **kwargs
    )


def log_upgrade_stage(stage: str, version: str = None, **kwargs) -> None:
    """Log that an upgrade run completed a stage."""
    logger = get_logger("upgrade.stage")
    logger.info("Upgrade stage completed", stage=stage, version=version, **kwargs)


def log_facet_cut(
    facet_name: str,
    cut: List[Dict[str, Any]],
    signatures: Optional[Mapping[str, str]] = None,
) -> None:
    """
    Log the selector actions scheduled for one facet.

    Args:
        facet_name: Facet name
        cut: Cut entries as dicts with action, facet_address and selectors
        signatures: Optional selector -> signature mapping for readability
    """
    logger = get_logger("upgrade.facet_cut")
    signatures = signatures or {}
    for entry in cut:
        logger.info(
            "Facet cut",
            facet=facet_name,
            action=entry["action"],
            facet_address=entry["facet_address"],
            selectors=[
                f"{signatures.get(selector, '?')}: {selector}"
                for selector in entry["selectors"]
            ],
        )


def log_interface_changes(added: List[str], removed: List[str]) -> None:
    """Log interface ids added to and removed from the diamond."""
    logger = get_logger("upgrade.interfaces")
    if added:
        logger.info("Added interfaces", interface_ids=added)
    if removed:
        logger.info("Removed interfaces", interface_ids=removed)


def log_error(error: Exception, context: Dict[str, Any] = None) -> None:
    """
    Log an error with context.

    Args:
        error: Exception instance
        context: Additional context information
    """
    logger = get_logger("error")
    logger.error(
        "An error occurred",
        error=str(error),
        error_type=type(error).__name__,
        context=context or {},
        exc_info=True
    )


def log_request(method: str, url: str, status_code: int, duration: float, **kwargs) -> None:
    """
    Log HTTP request details.

    Args:
        method: HTTP method
        url: Request URL
        status_code: Response status code
        duration: Request duration in seconds
        **kwargs: Additional context to log
    """
    logger = get_logger("http.request")
    logger.info(
        "HTTP request completed",
        method=method,
        url=url,
        status_code=status_code,
        duration=duration,
        **kwargs
    )
