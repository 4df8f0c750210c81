"""All constants for the MSE conformance suite."""

from typing import Final

CONFORMANCE_LOGGER_NAME: Final[str] = "mse_conformance"
VERBOSE_LOG_LEVEL: Final[int] = 5

APPLICATION_NAME: Final[str] = "MSEConformance"
MSE_VERSION: Final[str] = "Current Editor's Draft"

# per-test wall clock budget (seconds), overridable per test
DEFAULT_TEST_TIMEOUT: Final[float] = 30.0

# bounds for the append/playback drivers
DEFAULT_APPEND_ITERATION_CAP: Final[int] = 1000
DEFAULT_PLAY_THROUGH_CEILING: Final[float] = 60.0
# leading gap (seconds) a host may leave before the first buffered frame
PLAYBACK_GAP_TOLERANCE: Final[float] = 0.5

# chunking
DEFAULT_SEGMENT_SIZE: Final[int] = 128 * 1024
DEFAULT_APPEND_SIZE: Final[int] = 65536
SMALL_APPEND_SIZE: Final[int] = 16384

# tolerance used by approximate equality checks
DEFAULT_APPROX_EPSILON: Final[float] = 0.5

CONF_ENV_PREFIX: Final[str] = "MSE_CONFORMANCE_"
SETTINGS_FILENAME: Final[str] = "settings.json"

DEFAULT_MEDIA_BASE_URL: Final[str] = "https://storage.googleapis.com/ytlr-cert.appspot.com/test-materials/"
