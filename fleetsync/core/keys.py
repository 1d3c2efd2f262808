"""Device-store key layout.

Identity-scoped keys are ``<prefix>_<handle>`` where the handle is the username
with every non-alphanumeric character replaced by ``_``. Session keys are
device-level singletons, and the offline queue key is deliberately identity
agnostic so pending writes survive logout.
"""

import re

# Device-level session keys
SESSION_KEY = "safetyCheck_session"
LAST_ACTIVITY_KEY = "safetyCheck_last_activity"

# Identity agnostic; never cleared on logout
OFFLINE_QUEUE_KEY = "safetycheck_offline_queue"

# Identity-scoped prefixes
KEY_INDEX_PREFIX = "sc_key_index"
HISTORY_PREFIX = "sc_history"
VALIDATION_LISTS_PREFIX = "sc_validation_lists"
READ_NOTIFICATIONS_PREFIX = "sc_read_notifications"
DISMISSED_NOTIFICATIONS_PREFIX = "sc_dismissed_notifications"
SURFACED_NOTIFICATIONS_PREFIX = "sc_surfaced_notifications"

_UNSAFE_CHARS = re.compile(r"[^a-z0-9]", re.IGNORECASE)


def sanitize_handle(username: str) -> str:
    """Turn a username into a handle that is safe to embed in a key."""
    return _UNSAFE_CHARS.sub("_", username)


def scoped_key(prefix: str, handle: str, *parts: str) -> str:
    """Build an identity-scoped key, e.g. ``sc_history_insp_1_general``."""
    return "_".join((prefix, handle) + parts)
