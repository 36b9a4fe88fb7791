"""TraceSpammer — rate-governed loop that generates and exports trace trees."""

from __future__ import annotations

import enum
import logging
import random
import threading
from collections.abc import Callable

from tracespammer._builder import DEFAULT_SERVICE_NAME, build_trace
from tracespammer._config import TracingConfig, TracingSettings
from tracespammer._errors import BuildError, TraceCancelled
from tracespammer._pipeline import ExporterPipeline
from tracespammer._types import OtlpProtocol, SpanData

logger = logging.getLogger("tracespammer.spammer")

PipelineFactory = Callable[[str, OtlpProtocol], ExporterPipeline]


class SpammerState(enum.Enum):
    """Lifecycle of the generation loop."""

    IDLE = "idle"
    ARMED = "armed"
    RUNNING = "running"


class TraceSpammer:
    """Generates one trace tree per tick at ``rate_per_second`` while enabled.

    ``start()``/``stop()`` toggle generation; :meth:`run` is the blocking
    loop a host drives with a cancellation event (or use :meth:`launch` and
    :meth:`shutdown` for a daemon thread). Every accepted configuration
    change rebuilds the exporter pipeline exactly once.
    """

    def __init__(
        self,
        config: TracingConfig,
        *,
        pipeline_factory: PipelineFactory = ExporterPipeline.build,
        idle_poll_s: float = 0.5,
        dispose_join_s: float = 5.0,
        rng: random.Random | None = None,
        service_name: str = DEFAULT_SERVICE_NAME,
    ) -> None:
        self.config = config
        self._pipeline_factory = pipeline_factory
        self._idle_poll_s = idle_poll_s
        self._dispose_join_s = dispose_join_s
        self._rng = rng if rng is not None else random.Random()
        self._service_name = service_name

        self._enabled = threading.Event()
        self._pipeline_lock = threading.Lock()
        self._pipeline: ExporterPipeline | None = None
        self._pipeline_revision = -1
        self._accepting = True
        self._retiring: list[threading.Thread] = []
        self._loop_alive = False

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        self._counter_lock = threading.Lock()
        self.traces_started = 0
        self.spans_submitted = 0
        self.rebuild_count = 0

        self._unsubscribe: Callable[[], None] | None = config.subscribe(
            self._on_config_changed
        )

    # -- control surface -------------------------------------------------

    def start(self) -> None:
        """Enable trace generation. No-op if already enabled."""
        if not self._enabled.is_set():
            self._enabled.set()
            logger.info("Trace generation started")

    def stop(self) -> None:
        """Disable trace generation; the loop stays alive and polls."""
        if self._enabled.is_set():
            self._enabled.clear()
            logger.info("Trace generation stopped")

    @property
    def is_running(self) -> bool:
        return self._enabled.is_set()

    @property
    def state(self) -> SpammerState:
        if not self._loop_alive:
            return SpammerState.IDLE
        if self._enabled.is_set() and self.pipeline is not None:
            return SpammerState.RUNNING
        return SpammerState.ARMED

    @property
    def pipeline(self) -> ExporterPipeline | None:
        """The current exporter pipeline, if one has been built."""
        with self._pipeline_lock:
            return self._pipeline

    # -- pipeline lifecycle ----------------------------------------------

    def rebuild_pipeline(self, settings: TracingSettings | None = None) -> bool:
        """Build a pipeline for ``settings``, swap it in, retire the old one.

        The old pipeline is disposed on a background thread so the caller
        (usually :meth:`TracingConfig.set`, holding the store lock) does not
        wait for its final drain. Returns False if the build failed (the
        previous pipeline, if any, stays current), if ``settings`` is older
        than the current pipeline, or if :meth:`run` has already exited.
        """
        settings = settings if settings is not None else self.config.snapshot()

        with self._pipeline_lock:
            if not self._accepting:
                logger.debug("Loop has exited; not rebuilding for revision %d", settings.revision)
                return False
            if settings.revision < self._pipeline_revision:
                logger.debug("Skipping rebuild for stale revision %d", settings.revision)
                return False
            try:
                new = self._pipeline_factory(settings.endpoint, settings.protocol)
            except BuildError as exc:
                logger.error("BuildError: %s; keeping previous pipeline", exc)
                return False
            except Exception:  # noqa: BLE001
                logger.exception(
                    "BuildError: pipeline factory failed for %s; keeping previous pipeline",
                    settings.endpoint,
                )
                return False
            old, self._pipeline = self._pipeline, new
            self._pipeline_revision = settings.revision
            self.rebuild_count += 1
            if old is not None:
                self._retire(old)

        logger.info(
            "Exporter pipeline built for endpoint %s using %s",
            settings.endpoint,
            settings.protocol.value,
        )
        return True

    def _on_config_changed(self, settings: TracingSettings, field: str) -> None:
        logger.debug("Configuration field %s changed; rebuilding pipeline", field)
        self.rebuild_pipeline(settings)

    def _retire(self, pipeline: ExporterPipeline) -> None:
        # Called with the pipeline lock held.
        self._retiring = [t for t in self._retiring if t.is_alive()]
        thread = threading.Thread(
            target=self._dispose_quietly,
            args=(pipeline,),
            name="tracespammer-dispose",
            daemon=True,
        )
        self._retiring.append(thread)
        thread.start()

    @staticmethod
    def _dispose_quietly(pipeline: ExporterPipeline) -> None:
        try:
            pipeline.dispose()
        except Exception:  # noqa: BLE001
            logger.warning("Error disposing pipeline %r", pipeline, exc_info=True)

    def _dispose_pipeline(self) -> None:
        with self._pipeline_lock:
            self._accepting = False
            pipeline, self._pipeline = self._pipeline, None
            self._pipeline_revision = -1
            retiring, self._retiring = self._retiring, []
        if pipeline is not None:
            self._dispose_quietly(pipeline)
        for thread in retiring:
            thread.join(timeout=self._dispose_join_s)
            if thread.is_alive():
                logger.warning(
                    "Previous pipeline still draining after %.1fs", self._dispose_join_s
                )

    # -- loop --------------------------------------------------------------

    def run(self, stop_event: threading.Event) -> None:
        """Generate traces until ``stop_event`` is set, then dispose the pipeline."""
        with self._pipeline_lock:
            self._accepting = True
        self._loop_alive = True
        try:
            if self.pipeline is None:
                self.rebuild_pipeline()
            while not stop_event.is_set():
                settings = self.config.snapshot()
                if self._enabled.is_set() and self.pipeline is not None:
                    self._run_burst(settings.rate_per_second, stop_event)
                else:
                    stop_event.wait(self._idle_poll_s)
        finally:
            self._loop_alive = False
            self._dispose_pipeline()
            logger.info(
                "Trace spammer exited (traces=%d spans=%d)",
                self.traces_started,
                self.spans_submitted,
            )

    def _run_burst(self, count: int, stop_event: threading.Event) -> None:
        for _ in range(count):
            if stop_event.is_set() or not self._enabled.is_set():
                return
            tick = self.config.snapshot()
            pipeline = self.pipeline
            if pipeline is None:
                return
            try:
                self._emit_trace(tick, pipeline, stop_event)
            except TraceCancelled:
                logger.debug("Trace generation cancelled mid-tree")
                return
            except Exception:  # noqa: BLE001
                logger.exception("Trace generation failed; continuing")
            if stop_event.wait(1.0 / tick.rate_per_second):
                return

    def _emit_trace(
        self,
        settings: TracingSettings,
        pipeline: ExporterPipeline,
        stop_event: threading.Event,
    ) -> None:
        def sink(span: SpanData) -> None:
            pipeline.submit(span)
            with self._counter_lock:
                self.spans_submitted += 1

        with self._counter_lock:
            self.traces_started += 1
        build_trace(
            settings,
            sink=sink,
            stop_event=stop_event,
            rng=self._rng,
            service_name=self._service_name,
        )

    # -- hosting helpers ---------------------------------------------------

    def launch(self) -> None:
        """Run the loop on a daemon thread."""
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run, args=(self._stop_event,), name="tracespammer-loop", daemon=True
        )
        self._thread.start()

    def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel the loop thread, wait for it, detach from the config and dispose."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if not self._loop_alive:
            # Also releases a pipeline built by a change before the loop ever ran.
            self._dispose_pipeline()
