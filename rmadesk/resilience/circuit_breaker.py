from datetime import datetime, timedelta
from enum import Enum
from threading import Lock
from typing import Any, Callable

from rmadesk.observability.metrics_collector import metrics_collector
from rmadesk.observability.structured_logger import app_logger


class CircuitState(Enum):
    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Failing, reject calls
    HALF_OPEN = "half_open"  # Testing if the provider recovered


class CircuitBreakerOpenError(Exception):
    """Raised when circuit breaker is open"""


class CircuitBreaker:
    """Stops calling a failing email provider until it has had time to recover"""

    def __init__(
        self,
        failure_threshold: int = 3,
        timeout_seconds: int = 60,
        success_threshold: int = 1,
        name: str = "default"
    ):
        self.failure_threshold = failure_threshold
        self.timeout_seconds = timeout_seconds
        self.success_threshold = success_threshold
        self.name = name

        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = None
        self.state = CircuitState.CLOSED
        self.lock = Lock()

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """Execute function through circuit breaker"""
        with self.lock:
            if self.state == CircuitState.OPEN:
                if self._should_attempt_reset():
                    self.state = CircuitState.HALF_OPEN
                    self.success_count = 0
                    app_logger.info(
                        f"Circuit breaker '{self.name}' moved to HALF_OPEN",
                        circuit_name=self.name,
                        timeout_seconds=self.timeout_seconds
                    )
                    self._count_state_change(CircuitState.HALF_OPEN)
                else:
                    metrics_collector.increment_counter('circuit_breaker_rejections', labels={'circuit': self.name})
                    app_logger.warning(
                        f"Circuit breaker '{self.name}' is OPEN - call rejected",
                        circuit_name=self.name,
                        failure_count=self.failure_count
                    )
                    raise CircuitBreakerOpenError(f"Circuit breaker '{self.name}' is OPEN")

        # Execute function outside the lock
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def _on_success(self):
        with self.lock:
            self.failure_count = 0
            if self.state == CircuitState.HALF_OPEN:
                self.success_count += 1
                if self.success_count >= self.success_threshold:
                    self.state = CircuitState.CLOSED
                    self.success_count = 0
                    app_logger.info(f"Circuit breaker '{self.name}' CLOSED - recovered", circuit_name=self.name)
                    self._count_state_change(CircuitState.CLOSED)

    def _on_failure(self, exception: Exception = None):
        with self.lock:
            self.failure_count += 1
            self.last_failure_time = datetime.now()
            metrics_collector.increment_counter('circuit_breaker_failures', labels={'circuit': self.name})
            app_logger.warning(
                f"Circuit breaker '{self.name}' failure",
                circuit_name=self.name,
                failure_count=self.failure_count,
                threshold=self.failure_threshold,
                error=str(exception) if exception else None
            )

            # A failed trial call while half-open reopens immediately
            if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
                if self.state != CircuitState.OPEN:
                    self.state = CircuitState.OPEN
                    app_logger.error(
                        f"Circuit breaker '{self.name}' OPENED",
                        circuit_name=self.name,
                        failure_count=self.failure_count,
                        timeout_seconds=self.timeout_seconds
                    )
                    self._count_state_change(CircuitState.OPEN)

    def _should_attempt_reset(self) -> bool:
        if self.last_failure_time is None:
            return True
        elapsed = datetime.now() - self.last_failure_time
        return elapsed > timedelta(seconds=self.timeout_seconds)

    def _count_state_change(self, new_state: CircuitState):
        metrics_collector.increment_counter(
            'circuit_breaker_state_changes',
            labels={'circuit': self.name, 'new_state': new_state.value}
        )

    def get_state(self) -> CircuitState:
        return self.state

    def get_metrics(self) -> dict:
        return {
            'name': self.name,
            'state': self.state.value,
            'failure_count': self.failure_count,
            'success_count': self.success_count,
            'failure_threshold': self.failure_threshold,
            'timeout_seconds': self.timeout_seconds,
            'last_failure_time': self.last_failure_time.isoformat() if self.last_failure_time else None
        }
