"""
accsim — Shared Channel (Bus) Between Processing Unit and Memory

The channel holds only the most recent transaction: an address, a data
byte and a control signal, each of which may be None. It keeps no history.
Every mutation (send or clear) synchronously notifies all subscribers, in
the order they subscribed, with the complete resulting state.

Subscribers register with subscribe() and get back a Subscription token;
cancelling the token removes the observer.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

log = logging.getLogger(__name__)


class Control:
    """Control-signal values carried on the channel."""
    FETCH = 'FETCH'
    READ = 'READ'
    WRITE = 'WRITE'


@dataclass(frozen=True)
class BusState:
    """Immutable view of the channel lines."""
    address: Optional[int] = None
    data: Optional[int] = None
    control: Optional[str] = None

    @property
    def idle(self) -> bool:
        return self.address is None and self.data is None and self.control is None

    def as_dict(self) -> Dict[str, object]:
        return {'address': self.address, 'data': self.data, 'control': self.control}


BusObserver = Callable[[BusState], None]

# Marks a field that send() should leave untouched (None is a real value)
UNSET = object()


class Subscription:
    """Capability token returned by subscribe(); cancel() unregisters."""

    def __init__(self, owner, observer: Callable):
        self._owner = owner
        self.observer = observer
        self.active = True

    def cancel(self):
        if self.active:
            self.active = False
            self._owner.unsubscribe(self)

    def __repr__(self):
        state = 'active' if self.active else 'cancelled'
        return f"<Subscription {getattr(self.observer, '__name__', self.observer)!r} {state}>"


class Channel:
    """Last-transaction broadcast between the processing unit and memory.

    Usage:
        bus = Channel()
        sub = bus.subscribe(lambda s: print(s.as_dict()))
        bus.send(address=3, data=None, control=Control.FETCH)
        bus.clear()
        sub.cancel()
    """

    def __init__(self):
        self._state = BusState()
        self._subscriptions: List[Subscription] = []

    # --- State ---

    @property
    def state(self) -> BusState:
        return self._state

    @property
    def address(self) -> Optional[int]:
        return self._state.address

    @property
    def data(self) -> Optional[int]:
        return self._state.data

    @property
    def control(self) -> Optional[str]:
        return self._state.control

    # --- Mutation ---

    def send(self, address=UNSET, data=UNSET, control=UNSET):
        """Merge the given fields into the current lines and notify.

        Omitted fields keep their previous value; pass None explicitly to
        drop a line.
        """
        cur = self._state
        self._state = BusState(
            address=cur.address if address is UNSET else address,
            data=cur.data if data is UNSET else data,
            control=cur.control if control is UNSET else control,
        )
        self._notify()

    def clear(self):
        self._state = BusState()
        self._notify()

    # --- Subscribers ---

    def subscribe(self, observer: BusObserver) -> Subscription:
        sub = Subscription(self, observer)
        self._subscriptions.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription):
        sub.active = False
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _notify(self):
        state = self._state
        # Copy: observers may (un)subscribe while being notified
        for sub in list(self._subscriptions):
            if sub.active:
                sub.observer(state)
