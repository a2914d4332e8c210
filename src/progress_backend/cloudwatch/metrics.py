import logging
import typing

from aws_embedded_metrics import metric_scope

_LOGGER = logging.getLogger(__name__)


class MetricsManager:
    """
    Collects reward engine metrics during one invocation and emits them as a single
    embedded-metrics log record when flushed.
    """

    def __init__(self, namespace: str):
        self._namespace = namespace
        self._metrics: dict[str, tuple[float, str]] = {}
        self._dimensions: dict[str, str] = {}

    def set_dimension(self, name: str, value: str) -> None:
        self._dimensions[name] = value

    def put_metric(self, name: str, value: float, unit: str = "Count") -> None:
        """Queues a metric. Repeated counts under the same name within an invocation are summed."""
        if name in self._metrics and unit == "Count":
            value += self._metrics[name][0]
        self._metrics[name] = (value, unit)
        _LOGGER.info(f"Queued metric '{name}' with value {value} in namespace '{self._namespace}'")

    @property
    def queued(self) -> dict[str, tuple[float, str]]:
        return dict(self._metrics)

    @metric_scope
    def flush(self, metrics: typing.Any) -> None:
        if not self._metrics:
            return
        metrics.set_namespace(self._namespace)
        if self._dimensions:
            metrics.set_dimensions(dict(self._dimensions))
        for name, (value, unit) in self._metrics.items():
            metrics.put_metric(name, value, unit)

        _LOGGER.info(f"Flushed {len(self._metrics)} metrics to namespace '{self._namespace}'.")
        self._metrics = {}
