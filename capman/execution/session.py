"""Client order id generation.

Every order sent to the broker carries a client order id that is never
reused. Ids combine a random per-session token with a counter, so ids from
one session never collide and ids from different sessions are unlikely to.
"""

import secrets
from typing import Optional

ORDER_ID_PREFIX = "cpm"


class OrderSession:
    """Source of unique client order ids for one process or test.

    Example:
        >>> session = OrderSession(token="1A2B3C4D")
        >>> session.next_order_id()
        'cpm_1A2B3C4D_0'
        >>> session.next_order_id()
        'cpm_1A2B3C4D_1'
    """

    def __init__(self, token: Optional[str] = None):
        """Initialize session.

        Args:
            token: Session token. A random 8 hex digit token if None.
        """
        self.token = token or secrets.token_hex(4).upper()
        self._counter = 0

    @property
    def issued(self) -> int:
        """Number of ids handed out so far."""
        return self._counter

    def next_order_id(self) -> str:
        order_id = f"{ORDER_ID_PREFIX}_{self.token}_{self._counter}"
        self._counter += 1
        return order_id
