"""
Centralized constants for crosstool.

Defaults here are overridable through ``crosstool.core.settings``; modules
should read the settings object and only fall back to these values.
"""

# ============================================================================
# Server Configuration
# ============================================================================

DEFAULT_SERVER_HOST = "127.0.0.1"
"""Default host the local server binds to."""

DEFAULT_SERVER_PORT = 9229
"""Well-known port shared by every client on the machine."""

DEFAULT_APP_DIR_NAME = ".crosstool"
"""Application directory created under the user's home."""

DEFAULT_DB_FILENAME = "data.sqlite"
"""SQLite file name inside the application directory."""

DEFAULT_CLIENT_TOKEN = "vscode-client"
"""Request token every server accepts for local editor clients."""

STARTUP_SIGNAL = "Server started on port"
"""Line prefix the server prints to stdout once its socket is bound."""

PING_PATH = "/ping"
"""Liveness endpoint."""

PING_BODY = "pong"
"""Body expected from the liveness endpoint."""

INITIAL_ITEMS = ("Test Item 1", "Test Item 2", "Test Item 3")
"""Sample rows inserted by a seeded database initialization."""


# ============================================================================
# Timeouts
# ============================================================================

PROBE_TIMEOUT_SECONDS = 1.0
"""Timeout for a single health probe."""

REQUEST_TIMEOUT_SECONDS = 10.0
"""Timeout for an API request once the server is live."""

STARTUP_TIMEOUT_SECONDS = 5.0
"""How long the launcher waits for the startup signal."""

HEALTH_FRESHNESS_SECONDS = 30.0
"""Cached health older than this is re-probed before the next request."""

PORT_RELEASE_RETRIES = 5
"""Bind-test retries before a busy port is treated as owned."""

PORT_RELEASE_INTERVAL_SECONDS = 0.1
"""Sleep between bind-test retries."""


# ============================================================================
# Launch Retry Policy
# ============================================================================

LAUNCH_ATTEMPTS = 3
"""Bounded launch attempts before the supervisor degrades."""

LAUNCH_BACKOFF_SECONDS = 0.5
"""Base delay for exponential backoff between launch attempts."""


# ============================================================================
# Environment Variable Names
# ============================================================================

ENV_SERVER_CHILD = "CROSSTOOL_SERVER_CHILD"
"""Marks a server process spawned by a supervisor."""

ENV_SERVER_LOG = "CROSSTOOL_SERVER_LOG"
"""File a supervised server moves its stdout/stderr to once it has started."""

DEFAULT_SERVER_LOG_FILENAME = "server.log"
"""Log file name for supervised servers, relative to the app directory."""
