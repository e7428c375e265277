# =============================================================================
# rivetbot -- Package Logger
# =============================================================================

import logging

logger = logging.getLogger("rivetbot")
