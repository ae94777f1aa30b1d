"""Translation of broker exceptions into classified errors.

Every translated error is reported, then rendered, through the
application's exception handler before it reaches the caller.
"""

import logging
from typing import Any

from .errors import BowlerError, classify
from .handler import Delivery, ExceptionHandler, LoggingExceptionHandler

logger = logging.getLogger(__name__)


class ExceptionTranslator:
    """
    Classifies broker failures and hands them to the exception handler.

    Usage:
        translator = ExceptionTranslator(LoggingExceptionHandler())
        try:
            await channel.declare_exchange(...)
        except Exception as e:
            raise translator.translate(e, parameters, arguments) from e
    """

    def __init__(self, exception_handler: ExceptionHandler | None = None):
        self.exception_handler = exception_handler or LoggingExceptionHandler()

    def translate(
        self,
        error: BaseException,
        parameters: dict[str, Any] | None = None,
        arguments: dict[str, Any] | None = None,
    ) -> BowlerError:
        """
        Classify a broker failure, then report and render it.

        Args:
            error: Exception raised at the broker boundary
            parameters: Declaration parameters at the call site
            arguments: Declaration arguments at the call site

        Returns:
            The classified error, for the caller to raise
        """
        if isinstance(error, BowlerError):
            return error

        classified = classify(error, parameters, arguments)
        logger.debug(f"Classified {error.__class__.__name__} as {classified.kind.value}")

        self.report_error(classified, None)
        self.render_error(classified, None)
        return classified

    def translate_queue(self, error: BaseException, delivery: Delivery) -> BowlerError:
        """Classify a broker failure raised while settling a delivery."""
        classified = error if isinstance(error, BowlerError) else classify(error)

        self.exception_handler.report_queue(classified, delivery)
        self.exception_handler.render_queue(classified, delivery)
        return classified

    def report_error(self, error: Exception, delivery: Delivery | None) -> None:
        self.exception_handler.report_error(error, delivery)

    def render_error(self, error: Exception, delivery: Delivery | None) -> None:
        self.exception_handler.render_error(error, delivery)
