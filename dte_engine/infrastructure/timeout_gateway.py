"""Decorador del gateway del SII que acota cada llamada con un timeout."""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Optional

import structlog

from dte_engine.application.config import SiiConfig
from dte_engine.application.dtos import AuthorityResponse
from dte_engine.application.ports.submission_gateway import SubmissionGateway
from dte_engine.domain.entities import TaxDocument
from dte_engine.domain.exceptions import GatewayError

logger = structlog.get_logger()

LateReferenceHandler = Callable[[str, str], object]


class TimeoutSubmissionGateway:
    """Ejecuta el gateway real en un pool de threads y corta en el timeout.

    Un timeout se convierte en ``GatewayError`` y el documento queda en ERROR.
    El envío sigue en curso: mientras no termine, un nuevo ``submit`` del mismo
    documento se rechaza sin llegar al SII. Si el track id llega después del
    corte, se entrega al ``late_reference_handler`` (id de documento, track id)
    para que quede persistido.
    """

    def __init__(
        self,
        inner: SubmissionGateway,
        submit_timeout: float = 30.0,
        poll_timeout: float = 15.0,
        max_workers: int = 4,
        late_reference_handler: Optional[LateReferenceHandler] = None,
    ) -> None:
        if submit_timeout <= 0 or poll_timeout <= 0:
            raise ValueError("Los timeouts del gateway deben ser > 0")
        self._inner = inner
        self._submit_timeout = submit_timeout
        self._poll_timeout = poll_timeout
        self._late_reference_handler = late_reference_handler
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="sii-gateway"
        )
        self._in_flight_lock = threading.Lock()
        self._in_flight_cleared = threading.Condition(self._in_flight_lock)
        self._in_flight: dict[str, Future] = {}

    @classmethod
    def from_config(
        cls,
        inner: SubmissionGateway,
        sii: SiiConfig,
        late_reference_handler: Optional[LateReferenceHandler] = None,
    ) -> TimeoutSubmissionGateway:
        logger.info(
            "sii_gateway_configured",
            environment=sii.environment,
            submit_timeout=sii.submit_timeout_seconds,
            poll_timeout=sii.poll_timeout_seconds,
        )
        return cls(
            inner,
            submit_timeout=sii.submit_timeout_seconds,
            poll_timeout=sii.poll_timeout_seconds,
            late_reference_handler=late_reference_handler,
        )

    def bind_late_reference_handler(self, handler: LateReferenceHandler) -> None:
        self._late_reference_handler = handler

    def has_submission_in_flight(self, document_id: str) -> bool:
        with self._in_flight_lock:
            return document_id in self._in_flight

    def submit(self, document: TaxDocument) -> str:
        with self._in_flight_lock:
            if document.id in self._in_flight:
                raise GatewayError(
                    f"El envío anterior del folio {document.folio} sigue sin respuesta del SII"
                )
            future = self._executor.submit(self._inner.submit, document)
            self._in_flight[document.id] = future

        timed_out = False
        try:
            return future.result(timeout=self._submit_timeout)
        except FutureTimeoutError:
            timed_out = True
            future.add_done_callback(lambda f: self._on_late_completion(f, document))
            logger.warning(
                "gateway_submit_timeout",
                document_id=document.id,
                folio=document.folio,
                timeout=self._submit_timeout,
            )
            raise GatewayError(
                f"Timeout de envío al SII ({self._submit_timeout:g}s)"
            ) from None
        except GatewayError:
            raise
        except Exception as e:
            raise GatewayError(f"Falla de transporte al enviar: {e}") from e
        finally:
            if not timed_out:
                self._release(document.id)

    def poll_status(self, tracking_reference: str) -> AuthorityResponse:
        future = self._executor.submit(self._inner.poll_status, tracking_reference)
        try:
            return future.result(timeout=self._poll_timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(
                "gateway_poll_timeout",
                tracking_reference=tracking_reference,
                timeout=self._poll_timeout,
            )
            raise GatewayError(
                f"Timeout consultando estado del track {tracking_reference}"
            ) from None
        except GatewayError:
            raise
        except Exception as e:
            raise GatewayError(f"Falla de transporte al consultar estado: {e}") from e

    def shutdown(self, wait: bool = True, drain_timeout: Optional[float] = None) -> None:
        """Con ``wait``, espera a que los envíos en curso terminen y entreguen su track id.

        La espera se acota a ``drain_timeout`` (por omisión, el timeout de envío).
        """
        if wait:
            limit = self._submit_timeout if drain_timeout is None else drain_timeout
            with self._in_flight_cleared:
                self._in_flight_cleared.wait_for(lambda: not self._in_flight, timeout=limit)
        self._executor.shutdown(wait=wait)

    def _release(self, document_id: str) -> None:
        with self._in_flight_cleared:
            self._in_flight.pop(document_id, None)
            self._in_flight_cleared.notify_all()

    def _on_late_completion(self, future: Future, document: TaxDocument) -> None:
        if future.cancelled() or future.exception() is not None:
            logger.warning(
                "late_submission_failed",
                document_id=document.id,
                folio=document.folio,
                error=str(future.exception()) if not future.cancelled() else "cancelled",
            )
            self._release(document.id)
            return

        tracking_reference = future.result()
        logger.warning(
            "late_tracking_reference",
            document_id=document.id,
            folio=document.folio,
            tracking_reference=tracking_reference,
        )
        if self._late_reference_handler is None or not tracking_reference:
            self._release(document.id)
            return
        # Fuera del thread que hizo el envío: el handler toma el lock del documento.
        try:
            self._executor.submit(self._deliver_late_reference, document.id, tracking_reference)
        except RuntimeError:
            logger.error(
                "late_tracking_reference_unrecorded",
                document_id=document.id,
                tracking_reference=tracking_reference,
                reason="executor cerrado",
            )
            self._release(document.id)

    def _deliver_late_reference(self, document_id: str, tracking_reference: str) -> None:
        try:
            self._late_reference_handler(document_id, tracking_reference)
        except Exception:
            logger.exception(
                "late_tracking_reference_unrecorded",
                document_id=document_id,
                tracking_reference=tracking_reference,
            )
        finally:
            self._release(document_id)
